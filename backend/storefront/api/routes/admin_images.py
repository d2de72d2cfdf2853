import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends

from storefront import crud
from storefront.api.deps import (
    AdminUser,
    ImageStorageDep,
    OptionalImageStorageDep,
    SessionDep,
    admin_rate_limit,
)
from storefront.api.envelopes import ApiResponse
from storefront.core.errors import ApiError, NotFoundError, ValidationError
from storefront.core.storage import (
    CloudinaryStorage,
    StoredImage,
    product_folder,
)
from storefront.models import (
    ImageReorderRequest,
    ImageUpdate,
    ImageUploadRequest,
    Product,
    ProductImagePublic,
)
from storefront.utils.images import ValidatedImage, validate_image

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/products",
    tags=["admin-images"],
    dependencies=[Depends(admin_rate_limit)],
)


def get_live_product(session: SessionDep, id: uuid.UUID) -> Product:
    product = session.get(Product, id)
    if not product or product.deleted_at is not None:
        raise NotFoundError("Product")
    return product


def discard_uploads(storage: CloudinaryStorage, uploads: list[StoredImage]) -> None:
    for stored in uploads:
        try:
            storage.delete(stored.public_id)
        except ApiError:
            logger.warning("Could not clean up uploaded image %s", stored.public_id)


@router.get("/{id}/images", response_model=ApiResponse[list[ProductImagePublic]])
def read_product_images(session: SessionDep, current_user: AdminUser, id: uuid.UUID) -> Any:
    product = get_live_product(session, id)
    images = crud.list_product_images(session=session, product_id=product.id)
    return ApiResponse(data=[ProductImagePublic.model_validate(i) for i in images])


@router.post(
    "/{id}/images", status_code=201, response_model=ApiResponse[list[ProductImagePublic]]
)
def upload_product_images(
    *,
    session: SessionDep,
    storage: ImageStorageDep,
    current_user: AdminUser,
    id: uuid.UUID,
    body: ImageUploadRequest,
) -> Any:
    """
    Validate, upload and attach one image (``image``) or a batch (``images``).
    """
    product = get_live_product(session, id)
    entries = body.entries()
    crud.check_image_capacity(db_product=product, incoming=len(entries))

    validated: list[ValidatedImage] = []
    for index, entry in enumerate(entries):
        try:
            validated.append(validate_image(entry.image))
        except ValidationError as e:
            if body.images is None:
                raise ValidationError(str(e.detail), field="image")
            raise ValidationError(
                f"Image {index + 1}: {e.detail}", field=f"images.{index}.image"
            )

    folder = product_folder(product.id)
    uploaded: list[StoredImage] = []
    try:
        for image in validated:
            uploaded.append(storage.upload(image, folder=folder))
        images = crud.add_product_images(
            session=session,
            db_product=product,
            uploads=[
                (stored.url, stored.public_id, entry.alt_text, entry.is_primary)
                for stored, entry in zip(uploaded, entries)
            ],
        )
    except Exception:
        session.rollback()
        discard_uploads(storage, uploaded)
        raise

    logger.info(
        "Uploaded %d image(s) to product %s by %s",
        len(images),
        product.id,
        current_user.id,
    )
    return ApiResponse(
        data=[ProductImagePublic.model_validate(i) for i in images],
        message=f"Successfully uploaded {len(images)} image(s)",
    )


@router.put("/{id}/images/reorder", response_model=ApiResponse[list[ProductImagePublic]])
def reorder_product_images(
    *,
    session: SessionDep,
    current_user: AdminUser,
    id: uuid.UUID,
    body: ImageReorderRequest,
) -> Any:
    product = get_live_product(session, id)
    images = crud.reorder_product_images(
        session=session, db_product=product, image_orders=body.image_orders
    )
    logger.info("Reordered images of product %s by %s", product.id, current_user.id)
    return ApiResponse(
        data=[ProductImagePublic.model_validate(i) for i in images],
        message="Images reordered successfully",
    )


@router.patch(
    "/{id}/images/{image_id}", response_model=ApiResponse[ProductImagePublic]
)
def update_product_image(
    *,
    session: SessionDep,
    current_user: AdminUser,
    id: uuid.UUID,
    image_id: uuid.UUID,
    image_in: ImageUpdate,
) -> Any:
    product = get_live_product(session, id)
    image = crud.get_product_image(session=session, product_id=product.id, image_id=image_id)
    image = crud.update_product_image(session=session, db_image=image, image_in=image_in)
    logger.info("Image %s of product %s updated by %s", image.id, product.id, current_user.id)
    return ApiResponse(
        data=ProductImagePublic.model_validate(image),
        message="Image updated successfully",
    )


@router.post(
    "/{id}/images/{image_id}/primary", response_model=ApiResponse[ProductImagePublic]
)
def set_primary_image(
    session: SessionDep, current_user: AdminUser, id: uuid.UUID, image_id: uuid.UUID
) -> Any:
    product = get_live_product(session, id)
    image = crud.get_product_image(session=session, product_id=product.id, image_id=image_id)
    image = crud.set_primary_image(session=session, db_image=image)
    logger.info("Image %s set as primary for product %s by %s", image.id, product.id, current_user.id)
    return ApiResponse(
        data=ProductImagePublic.model_validate(image),
        message="Primary image updated successfully",
    )


@router.delete("/{id}/images/{image_id}", response_model=ApiResponse[None])
def delete_product_image(
    session: SessionDep,
    storage: OptionalImageStorageDep,
    current_user: AdminUser,
    id: uuid.UUID,
    image_id: uuid.UUID,
) -> Any:
    """
    Delete an image. The stored asset is removed best effort.
    """
    product = get_live_product(session, id)
    image = crud.get_product_image(session=session, product_id=product.id, image_id=image_id)
    public_id = image.public_id
    crud.delete_product_image(session=session, db_image=image)

    if public_id and storage is not None:
        try:
            storage.delete(public_id)
        except ApiError as e:
            logger.warning("Stored image %s was not removed: %s", public_id, e.detail)

    logger.info("Image %s deleted from product %s by %s", image_id, product.id, current_user.id)
    return ApiResponse(data=None, message="Image deleted successfully")
