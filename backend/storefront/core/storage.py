import logging
from dataclasses import dataclass
from functools import lru_cache

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from storefront.core.config import settings
from storefront.core.errors import InternalServerError, ServiceUnavailableError
from storefront.utils.images import ValidatedImage

logger = logging.getLogger(__name__)


@dataclass
class StoredImage:
    url: str
    public_id: str
    width: int | None = None
    height: int | None = None
    bytes: int | None = None


class CloudinaryStorage:
    """Product image storage backed by the Cloudinary upload API."""

    def __init__(self, cloud_name: str, api_key: str, api_secret: str) -> None:
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )

    def upload(self, image: ValidatedImage, *, folder: str) -> StoredImage:
        try:
            result = cloudinary.uploader.upload(
                image.as_data_uri(),
                folder=folder,
                resource_type="image",
                use_filename=True,
                unique_filename=True,
                quality="auto",
                fetch_format="auto",
            )
        except CloudinaryError as e:
            logger.error("Cloudinary upload to %s failed: %s", folder, e)
            raise InternalServerError(f"Failed to upload image: {e}")
        return StoredImage(
            url=result["secure_url"],
            public_id=result["public_id"],
            width=result.get("width"),
            height=result.get("height"),
            bytes=result.get("bytes"),
        )

    def delete(self, public_id: str) -> None:
        try:
            cloudinary.uploader.destroy(public_id)
        except CloudinaryError as e:
            logger.error("Cloudinary delete of %s failed: %s", public_id, e)
            raise InternalServerError(f"Failed to delete image: {e}")


def product_folder(product_id: object) -> str:
    return f"{settings.CLOUDINARY_FOLDER}/{product_id}"


@lru_cache
def _cloudinary_storage() -> CloudinaryStorage:
    return CloudinaryStorage(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME or "",
        api_key=settings.CLOUDINARY_API_KEY or "",
        api_secret=settings.CLOUDINARY_API_SECRET or "",
    )


def get_image_storage() -> CloudinaryStorage:
    if not settings.cloudinary_enabled:
        raise ServiceUnavailableError(
            "Image upload service is not configured. Please contact administrator."
        )
    return _cloudinary_storage()


def get_optional_image_storage() -> CloudinaryStorage | None:
    """Storage for best-effort cleanup, ``None`` when uploads are not configured."""
    if not settings.cloudinary_enabled:
        return None
    return _cloudinary_storage()
