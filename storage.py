"""
Image uploads, forwarded to Cloudinary.

Handlers never see the object store: they hand over the uploaded file and
get back the public URL to save on the document.
"""
import logging
import os

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from fastapi import HTTPException, UploadFile

import settings

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = ("jpg", "jpeg", "png")

if settings.CLOUDINARY_CLOUD_NAME:
    cloudinary.config(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        secure=True,
    )


def image_format(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lstrip(".").lower()


class ImageStore:
    def __init__(self, root_folder: str):
        self.root_folder = root_folder

    def upload(self, file: UploadFile, folder: str) -> str:
        fmt = image_format(file.filename)
        if fmt not in ALLOWED_FORMATS:
            raise HTTPException(status_code=400, detail=f"Only {', '.join(ALLOWED_FORMATS)} images are allowed")
        try:
            result = cloudinary.uploader.upload(
                file.file,
                folder=f"{self.root_folder}/{folder}",
                allowed_formats=list(ALLOWED_FORMATS),
            )
        except CloudinaryError:
            logger.exception("Uploading %s to %s failed", file.filename, folder)
            raise HTTPException(status_code=502, detail="Error uploading image")
        return result["secure_url"]


_store = ImageStore(settings.UPLOAD_FOLDER)


def get_image_store() -> ImageStore:
    return _store
