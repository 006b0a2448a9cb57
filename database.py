"""
MongoDB access.

A `Store` wraps one pymongo Database and is created once at startup. Every
driver error is re-raised as StorageError so route handlers only deal with
the API error taxonomy.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import Settings
from errors import DuplicateKey, StorageError

logger = logging.getLogger(__name__)

USERS = "users"
CATEGORIES = "categories"
PRODUCTS = "products"
ORDER_ITEMS = "orderitems"
ORDERS = "orders"


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url)
    return client[settings.database_name]


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an identifier, returning None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        d[k] = _serialize_value(v)
    return d


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class Store:
    def __init__(self, db: Database):
        self.db = db

    def create_document(self, collection: str, data: Union[BaseModel, dict]) -> str:
        if isinstance(data, BaseModel):
            doc = data.model_dump(by_alias=True)
        else:
            doc = dict(data)
        try:
            result = self.db[collection].insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateKey() from e
        except PyMongoError as e:
            raise StorageError(str(e)) from e
        return str(result.inserted_id)

    def get_documents(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        projection: Optional[Dict[str, Any]] = None,
    ) -> List[dict]:
        try:
            cursor = self.db[collection].find(filter_dict or {}, projection)
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)
        except PyMongoError as e:
            raise StorageError(str(e)) from e

    def find_one(
        self,
        collection: str,
        filter_dict: Dict[str, Any],
        projection: Optional[Dict[str, Any]] = None,
    ) -> Optional[dict]:
        try:
            return self.db[collection].find_one(filter_dict, projection)
        except PyMongoError as e:
            raise StorageError(str(e)) from e

    def get_document(
        self,
        collection: str,
        doc_id: Any,
        projection: Optional[Dict[str, Any]] = None,
    ) -> Optional[dict]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        return self.find_one(collection, {"_id": oid}, projection)

    def update_document(self, collection: str, doc_id: Any, changes: Dict[str, Any]) -> Optional[dict]:
        """Apply `changes` with $set and return the updated document."""
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        changes = {**changes, "updatedAt": datetime.now(timezone.utc)}
        try:
            result = self.db[collection].update_one({"_id": oid}, {"$set": changes})
            if result.matched_count == 0:
                return None
            return self.db[collection].find_one({"_id": oid})
        except DuplicateKeyError as e:
            raise DuplicateKey() from e
        except PyMongoError as e:
            raise StorageError(str(e)) from e

    def push_to_list(self, collection: str, doc_id: Any, field: str, values: List[Any]) -> Optional[dict]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        try:
            result = self.db[collection].update_one({"_id": oid}, {"$push": {field: {"$each": values}}})
            if result.matched_count == 0:
                return None
            return self.db[collection].find_one({"_id": oid})
        except PyMongoError as e:
            raise StorageError(str(e)) from e

    def delete_document(self, collection: str, doc_id: Any) -> Optional[dict]:
        """Delete by id and return the removed document, or None."""
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        try:
            return self.db[collection].find_one_and_delete({"_id": oid})
        except PyMongoError as e:
            raise StorageError(str(e)) from e

    def count_documents(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        try:
            return self.db[collection].count_documents(filter_dict or {})
        except PyMongoError as e:
            raise StorageError(str(e)) from e

    def aggregate(self, collection: str, pipeline: List[Dict[str, Any]]) -> List[dict]:
        try:
            return list(self.db[collection].aggregate(pipeline))
        except PyMongoError as e:
            raise StorageError(str(e)) from e

    def ping(self) -> List[str]:
        try:
            return self.db.list_collection_names()
        except PyMongoError as e:
            raise StorageError(str(e)) from e
