import logging
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from storefront import crud
from storefront.api.deps import AdminUser, InventoryUser, SessionDep, admin_rate_limit
from storefront.api.envelopes import ApiResponse, PaginatedResponse, Pagination
from storefront.api.serializers import inventory_status
from storefront.core.errors import NotFoundError
from storefront.models import (
    AdminProductQuery,
    InventoryStatus,
    InventoryUpdate,
    Product,
    ProductCreate,
    ProductPublic,
    ProductUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/products",
    tags=["admin-products"],
    dependencies=[Depends(admin_rate_limit)],
)


def get_product_or_404(session: SessionDep, id: uuid.UUID) -> Product:
    product = session.get(Product, id)
    if not product:
        raise NotFoundError("Product")
    return product


@router.get("", response_model=PaginatedResponse[ProductPublic])
def read_admin_products(
    session: SessionDep,
    current_user: AdminUser,
    query: Annotated[AdminProductQuery, Query()],
) -> Any:
    """
    List non-deleted products with their category, inventory and images.
    """
    products, total = crud.list_admin_products(session=session, query=query)
    return PaginatedResponse[ProductPublic](
        data=[ProductPublic.model_validate(p) for p in products],
        pagination=Pagination.build(page=query.page, limit=query.limit, total=total),
        filters=query.model_dump(
            include={"search", "category_id", "status", "featured"},
            exclude_none=True,
            mode="json",
        ),
        sorting={"sort_by": query.sort_by, "sort_order": query.sort_order},
    )


@router.post("", status_code=201, response_model=ApiResponse[ProductPublic])
def create_product(
    *, session: SessionDep, current_user: AdminUser, product_in: ProductCreate
) -> Any:
    product = crud.create_product(session=session, product_in=product_in)
    logger.info(
        "Product %s (sku=%s) created by %s", product.id, product.sku, current_user.id
    )
    return ApiResponse(
        data=ProductPublic.model_validate(product),
        message="Product created successfully",
    )


@router.get("/{id}", response_model=ApiResponse[ProductPublic])
def read_admin_product(session: SessionDep, current_user: AdminUser, id: uuid.UUID) -> Any:
    """
    Get a product by id, soft-deleted products included.
    """
    product = get_product_or_404(session, id)
    return ApiResponse(data=ProductPublic.model_validate(product))


@router.patch("/{id}", response_model=ApiResponse[ProductPublic])
def update_product(
    *,
    session: SessionDep,
    current_user: AdminUser,
    id: uuid.UUID,
    product_in: ProductUpdate,
) -> Any:
    product = get_product_or_404(session, id)
    product = crud.update_product(
        session=session, db_product=product, product_in=product_in
    )
    logger.info(
        "Product %s updated by %s: %s",
        product.id,
        current_user.id,
        sorted(product_in.model_fields_set),
    )
    return ApiResponse(
        data=ProductPublic.model_validate(product),
        message="Product updated successfully",
    )


@router.delete("/{id}", response_model=ApiResponse[ProductPublic])
def delete_product(session: SessionDep, current_user: AdminUser, id: uuid.UUID) -> Any:
    """
    Soft delete a product: it is archived and hidden from listings.
    """
    product = get_product_or_404(session, id)
    product = crud.soft_delete_product(session=session, db_product=product)
    logger.info("Product %s deleted by %s", product.id, current_user.id)
    return ApiResponse(
        data=ProductPublic.model_validate(product),
        message="Product deleted successfully",
    )


@router.patch("/{id}/inventory", response_model=ApiResponse[InventoryStatus])
def update_product_inventory(
    *,
    session: SessionDep,
    current_user: InventoryUser,
    id: uuid.UUID,
    inventory_in: InventoryUpdate,
) -> Any:
    product = get_product_or_404(session, id)
    if product.deleted_at is not None:
        raise NotFoundError("Product")
    inventory = crud.update_inventory(
        session=session, db_product=product, inventory_in=inventory_in
    )
    logger.info(
        "Inventory for product %s set to quantity=%s threshold=%s by %s",
        product.id,
        inventory.quantity,
        inventory.low_stock_threshold,
        current_user.id,
    )
    return ApiResponse(
        data=inventory_status(inventory), message="Inventory updated successfully"
    )
