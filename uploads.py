"""
Product image uploads, stored on the local filesystem and served from
/public/uploads.
"""
import logging
import os
import time
from typing import List

from fastapi import Request, UploadFile
from werkzeug.utils import secure_filename

from errors import ValidationError

logger = logging.getLogger(__name__)

UPLOAD_ROUTE = "/public/uploads"

FILE_TYPE_MAP = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/jpg": "jpg",
}


def check_image(file: UploadFile) -> str:
    """Return the file extension for an accepted image type."""
    extension = FILE_TYPE_MAP.get(file.content_type or "")
    if not extension:
        raise ValidationError("Invalid image type")
    return extension


def build_filename(original: str, extension: str) -> str:
    name = secure_filename("-".join((original or "").split(" "))) or "image"
    return f"{name}-{int(time.time() * 1000)}.{extension}"


def build_upload_url(request: Request, filename: str) -> str:
    return f"{str(request.base_url).rstrip('/')}{UPLOAD_ROUTE}/{filename}"


def save_image(upload_dir: str, file: UploadFile) -> str:
    extension = check_image(file)
    filename = build_filename(file.filename, extension)
    os.makedirs(upload_dir, exist_ok=True)
    root = os.path.realpath(upload_dir)
    path = os.path.realpath(os.path.join(root, filename))
    if os.path.dirname(path) != root:
        raise ValidationError("Invalid file name")
    with open(path, "wb") as out:
        out.write(file.file.read())
    logger.info("Stored upload %s", filename)
    return filename


def save_images(upload_dir: str, files: List[UploadFile]) -> List[str]:
    # validate all first so a bad file in the batch writes nothing
    for f in files:
        check_image(f)
    return [save_image(upload_dir, f) for f in files]
