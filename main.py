import logging
import time
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError as SchemaError
from pymongo.database import Database

import uploads
from config import Settings, load_settings
from database import CATEGORIES, PRODUCTS, USERS, Store, connect, serialize_doc, to_object_id
from errors import DuplicateKey, InvalidCredentials, NotFound, StorageError, ValidationError, register_exception_handlers
from orders import OrderWorkflow
from schemas import (
    Category,
    CategoryUpdate,
    LoginRequest,
    OrderCreate,
    OrderStatusUpdate,
    Product,
    ProductUpdate,
    User,
    UserCreate,
    UserUpdate,
)
from security import (
    AuthGate,
    GlobalAuthMiddleware,
    PasswordHasher,
    Principal,
    TokenService,
    require_admin,
    require_user,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ----- Helpers -----

def get_store(request: Request) -> Store:
    return request.app.state.store


def get_orders(request: Request) -> OrderWorkflow:
    return request.app.state.orders


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def validated(model, **data):
    """Build a schema from handler-assembled data, reporting failures as 400s."""
    try:
        return model(**data)
    except SchemaError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"{field}: {first.get('msg')}" if field else first.get("msg")) from e


def header_id(value: Optional[str], label: str) -> str:
    if not value:
        raise ValidationError(f"{label} ID is required in headers")
    return value


def public_user(doc: dict) -> dict:
    user = serialize_doc(doc)
    user.pop("passwordHash", None)
    return user


def with_categories(store: Store, products: List[dict]) -> List[dict]:
    """Replace each product's category reference with the category document.

    References that no longer resolve are left as they are.
    """
    refs = [p.get("category") for p in products if isinstance(p.get("category"), ObjectId)]
    categories: Dict[ObjectId, dict] = {}
    if refs:
        for c in store.get_documents(CATEGORIES, {"_id": {"$in": refs}}):
            categories[c["_id"]] = c
    return [
        serialize_doc({**p, "category": categories.get(p.get("category"), p.get("category"))})
        for p in products
    ]


def resolve_category(store: Store, category_id: Optional[str]) -> ObjectId:
    oid = to_object_id(category_id)
    if oid is None or store.get_document(CATEGORIES, oid) is None:
        raise ValidationError("Invalid Category")
    return oid


# ----- Users -----

@router.get("/users")
def list_users(store: Store = Depends(get_store)):
    users = store.get_documents(USERS, projection={"passwordHash": 0})
    logger.info("Users data received")
    return [public_user(u) for u in users]


@router.get("/users/get/count")
def count_users(store: Store = Depends(get_store)):
    return {"userCount": store.count_documents(USERS)}


@router.get("/users/{user_id}")
def get_user(user_id: str, store: Store = Depends(get_store)):
    user = store.get_document(USERS, user_id, {"passwordHash": 0})
    if not user:
        raise NotFound("The user with the given Id was not found")
    return public_user(user)


@router.post("/users/register")
def register(payload: UserCreate, request: Request, store: Store = Depends(get_store)):
    if store.find_one(USERS, {"email": payload.email}):
        raise ValidationError("Email already registered")

    hasher: PasswordHasher = request.app.state.hasher
    data = payload.model_dump(exclude={"password"})
    user = User(**data, password_hash=hasher.hash(payload.password))
    try:
        user_id = store.create_document(USERS, user)
    except DuplicateKey:
        raise ValidationError("Email already registered")
    logger.info("User registered: %s", payload.email)
    return public_user(store.get_document(USERS, user_id))


@router.post("/users/login")
def login(creds: LoginRequest, request: Request, store: Store = Depends(get_store)):
    if not creds.password or not (creds.email or creds.name):
        raise ValidationError("email and password are required")

    query = {"email": creds.email} if creds.email else {"name": creds.name}
    user = store.find_one(USERS, query)
    hasher: PasswordHasher = request.app.state.hasher
    if not user or not hasher.verify(creds.password, user.get("passwordHash", "")):
        raise InvalidCredentials()

    tokens: TokenService = request.app.state.tokens
    principal = Principal(email=user["email"], is_admin=bool(user.get("isAdmin", False)))
    return {"token": tokens.issue(principal)}


@router.put("/users")
def update_user(
    payload: UserUpdate,
    request: Request,
    user_id: Optional[str] = Header(None, alias="id"),
    store: Store = Depends(get_store),
):
    user_id = header_id(user_id, "user")
    changes = payload.changes()

    if "email" in changes:
        other = store.find_one(USERS, {"email": changes["email"]})
        if other and str(other["_id"]) != user_id:
            raise ValidationError("Email already registered")

    # only a new plaintext is hashed; other updates leave the stored hash alone
    password = changes.pop("password", None)
    if password is not None:
        changes["passwordHash"] = request.app.state.hasher.hash(password)

    user = store.update_document(USERS, user_id, changes)
    if not user:
        raise NotFound("user not found")
    logger.info("Data Updated: user %s", user_id)
    return public_user(user)


@router.delete("/users")
def delete_user(
    user_id: Optional[str] = Header(None, alias="id"),
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_admin),
):
    user_id = header_id(user_id, "user")
    if not store.delete_document(USERS, user_id):
        raise NotFound("User not found")
    logger.info("User %s deleted by %s", user_id, principal.email)
    return {"message": "User Deleted"}


# ----- Categories -----

@router.get("/category")
def list_categories(store: Store = Depends(get_store)):
    return [serialize_doc(c) for c in store.get_documents(CATEGORIES)]


@router.get("/category/{category_id}")
def get_category(category_id: str, store: Store = Depends(get_store)):
    category = store.get_document(CATEGORIES, category_id)
    if not category:
        raise NotFound("The category with the given Id was not found")
    return serialize_doc(category)


@router.post("/category")
def create_category(
    payload: Category,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_user),
):
    category_id = store.create_document(CATEGORIES, payload)
    logger.info("Data Saved: category %s", category_id)
    return serialize_doc(store.get_document(CATEGORIES, category_id))


@router.put("/category")
def update_category(
    payload: CategoryUpdate,
    category_id: Optional[str] = Header(None, alias="id"),
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_user),
):
    category_id = header_id(category_id, "Category")
    category = store.update_document(CATEGORIES, category_id, payload.changes())
    if not category:
        raise NotFound("Category not found")
    logger.info("Data Updated: category %s", category_id)
    return serialize_doc(category)


@router.delete("/category")
def delete_category(
    category_id: Optional[str] = Header(None, alias="id"),
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_user),
):
    category_id = header_id(category_id, "Category")
    # products keep their (now dangling) category reference
    if not store.delete_document(CATEGORIES, category_id):
        raise NotFound("Category not found")
    logger.info("Category %s deleted", category_id)
    return {"message": "Category Deleted"}


# ----- Products -----

@router.get("/products")
def list_products(
    id: Optional[str] = None,
    categoryid: Optional[str] = None,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_user),
):
    if id:
        product = store.get_document(PRODUCTS, id, {"name": 1, "image": 1, "_id": 0})
        if not product:
            raise NotFound("Product not found")
        return product

    if categoryid:
        category = to_object_id(categoryid)
        products = store.get_documents(PRODUCTS, {"category": category}) if category else []
        if not products:
            raise NotFound("No products found for the given category")
        return with_categories(store, products)

    return with_categories(store, store.get_documents(PRODUCTS))


@router.get("/products/get/count")
def count_products(store: Store = Depends(get_store)):
    return {"productCount": store.count_documents(PRODUCTS)}


@router.get("/products/get/featured/{count}")
def featured_products(count: int, store: Store = Depends(get_store)):
    if count <= 0:
        return []
    products = store.get_documents(PRODUCTS, {"isFeatured": True}, limit=count)
    return with_categories(store, products)


@router.get("/products/filter")
def filter_products(
    categories: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    store: Store = Depends(get_store),
):
    query: dict = {}
    if categories:
        ids = [to_object_id(c.strip()) for c in categories.split(",")]
        query["category"] = {"$in": [i for i in ids if i is not None]}
    price = {}
    if min_price is not None:
        price["$gte"] = min_price
    if max_price is not None:
        price["$lte"] = max_price
    if price:
        query["price"] = price
    return with_categories(store, store.get_documents(PRODUCTS, query))


@router.post("/products")
def create_product(
    request: Request,
    name: str = Form(...),
    description: str = Form(...),
    category: str = Form(...),
    price: float = Form(0),
    rich_description: str = Form("", alias="richDescription"),
    brand: str = Form(""),
    count_in_stock: int = Form(0, alias="countInStock"),
    rating: float = Form(0),
    num_reviews: int = Form(0, alias="numReviews"),
    is_featured: bool = Form(False, alias="isFeatured"),
    image: Optional[UploadFile] = File(None),
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
    principal: Principal = Depends(require_admin),
):
    category_id = resolve_category(store, category)
    if image is None:
        raise ValidationError("No image provided")
    uploads.check_image(image)

    product = validated(
        Product,
        name=name,
        description=description,
        rich_description=rich_description,
        brand=brand,
        price=price,
        category=category_id,
        count_in_stock=count_in_stock,
        rating=rating,
        num_reviews=num_reviews,
        is_featured=is_featured,
    )
    filename = uploads.save_image(settings.upload_dir, image)
    product.image = uploads.build_upload_url(request, filename)

    product_id = store.create_document(PRODUCTS, product)
    logger.info("Product %s created by %s", product_id, principal.email)
    return with_categories(store, [store.get_document(PRODUCTS, product_id)])[0]


@router.put("/products")
def update_product(
    request: Request,
    product_id: Optional[str] = Header(None, alias="id"),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    rich_description: Optional[str] = Form(None, alias="richDescription"),
    brand: Optional[str] = Form(None),
    count_in_stock: Optional[int] = Form(None, alias="countInStock"),
    rating: Optional[float] = Form(None),
    num_reviews: Optional[int] = Form(None, alias="numReviews"),
    is_featured: Optional[bool] = Form(None, alias="isFeatured"),
    image: Optional[UploadFile] = File(None),
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
    principal: Principal = Depends(require_admin),
):
    product_id = header_id(product_id, "Product")
    category_id = resolve_category(store, category) if category is not None else None
    if not store.get_document(PRODUCTS, product_id, {"_id": 1}):
        raise NotFound("Product not found")
    if image is not None:
        uploads.check_image(image)

    update = validated(
        ProductUpdate,
        name=name,
        description=description,
        rich_description=rich_description,
        brand=brand,
        price=price,
        category=category_id,
        count_in_stock=count_in_stock,
        rating=rating,
        num_reviews=num_reviews,
        is_featured=is_featured,
    )
    changes = update.changes()
    if image is not None:
        filename = uploads.save_image(settings.upload_dir, image)
        changes["image"] = uploads.build_upload_url(request, filename)

    product = store.update_document(PRODUCTS, product_id, changes)
    if not product:
        raise NotFound("Product not found")
    logger.info("Product %s updated by %s", product_id, principal.email)
    return with_categories(store, [product])[0]


@router.put("/products/gallery-images")
def upload_gallery(
    request: Request,
    product_id: Optional[str] = Header(None, alias="id"),
    images: List[UploadFile] = File(...),
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
    principal: Principal = Depends(require_admin),
):
    product_id = header_id(product_id, "Product")
    if not store.get_document(PRODUCTS, product_id, {"_id": 1}):
        raise NotFound("Product not found")

    filenames = uploads.save_images(settings.upload_dir, images)
    urls = [uploads.build_upload_url(request, f) for f in filenames]
    product = store.push_to_list(PRODUCTS, product_id, "images", urls)
    if not product:
        raise NotFound("Product not found")
    return with_categories(store, [product])[0]


@router.delete("/products")
def delete_product(
    product_id: Optional[str] = Header(None, alias="id"),
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_admin),
):
    product_id = header_id(product_id, "Product")
    if not store.delete_document(PRODUCTS, product_id):
        raise NotFound("Product not found")
    logger.info("Product %s deleted by %s", product_id, principal.email)
    return {"message": "Product Deleted"}


# ----- Orders -----

@router.get("/order")
def list_orders(orders: OrderWorkflow = Depends(get_orders), principal: Principal = Depends(require_user)):
    return orders.list_orders()


@router.post("/order")
def create_order(
    payload: OrderCreate,
    orders: OrderWorkflow = Depends(get_orders),
    principal: Principal = Depends(require_user),
):
    return orders.create(payload)


@router.get("/order/get/totalsales")
def total_sales(orders: OrderWorkflow = Depends(get_orders), principal: Principal = Depends(require_user)):
    return {"totalSales": orders.total_sales()}


@router.get("/order/get/ordercount")
def order_count(orders: OrderWorkflow = Depends(get_orders), principal: Principal = Depends(require_user)):
    return {"orderCount": orders.order_count()}


@router.get("/order/get/userorders/{user_id}")
def user_orders(
    user_id: str,
    orders: OrderWorkflow = Depends(get_orders),
    principal: Principal = Depends(require_user),
):
    return orders.user_orders(user_id)


@router.get("/order/{order_id}")
def get_order(
    order_id: str,
    orders: OrderWorkflow = Depends(get_orders),
    principal: Principal = Depends(require_user),
):
    return orders.get(order_id)


@router.put("/order/{order_id}")
def update_order(
    order_id: str,
    payload: OrderStatusUpdate,
    orders: OrderWorkflow = Depends(get_orders),
    principal: Principal = Depends(require_user),
):
    return orders.update_status(order_id, payload.status)


@router.delete("/order/{order_id}")
def delete_order(
    order_id: str,
    orders: OrderWorkflow = Depends(get_orders),
    principal: Principal = Depends(require_user),
):
    orders.delete(order_id)
    return {"message": "Order deleted"}


# ----- App -----

def read_root():
    return {"message": "E-commerce Catalog Backend running"}


def database_status(request: Request):
    store: Store = request.app.state.store
    try:
        collections = store.ping()
        return {"backend": "ok", "db": "ok", "collections": collections[:10]}
    except StorageError as e:
        return {"backend": "ok", "db": f"error: {e.detail[:80]}"}


async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - started) * 1000
    logger.info("%s %s %s - %.3f ms", request.method, request.url.path, response.status_code, elapsed)
    return response


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = Store(database if database is not None else connect(settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.db[USERS].create_index("email", unique=True)
        logger.info("Connected to database %s", store.db.name)
        yield

    app = FastAPI(title="E-commerce Catalog API", lifespan=lifespan)

    tokens = TokenService(settings.jwt_secret, settings.jwt_expires_in)
    gate = AuthGate(tokens, settings.api_url)
    app.state.settings = settings
    app.state.store = store
    app.state.hasher = PasswordHasher(settings.bcrypt_rounds)
    app.state.tokens = tokens
    app.state.gate = gate
    app.state.orders = OrderWorkflow(store)

    if settings.global_auth:
        app.add_middleware(GlobalAuthMiddleware, gate=gate, expose_errors=settings.expose_errors)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(log_requests)

    register_exception_handlers(app, settings.expose_errors)

    app.get("/")(read_root)
    app.get("/test")(database_status)
    app.include_router(router, prefix=settings.api_url)
    app.mount(
        uploads.UPLOAD_ROUTE,
        StaticFiles(directory=settings.upload_dir, check_dir=False),
        name="uploads",
    )
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
