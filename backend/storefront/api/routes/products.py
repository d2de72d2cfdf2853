from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response

from storefront import crud
from storefront.api.deps import SessionDep, public_rate_limit
from storefront.api.envelopes import ApiResponse, PaginatedResponse, Pagination
from storefront.api.serializers import product_detail, product_list_item
from storefront.core.errors import NotFoundError, ValidationError
from storefront.models import ProductDetail, ProductListItem, PublicProductQuery
from storefront.utils.slug import is_valid_slug

router = APIRouter(
    prefix="/products",
    tags=["products"],
    dependencies=[Depends(public_rate_limit)],
)

# Public listings never return more than this many items per page
MAX_PUBLIC_PAGE_SIZE = 50


@router.get("", response_model=PaginatedResponse[ProductListItem])
def read_products(
    session: SessionDep, query: Annotated[PublicProductQuery, Query()]
) -> Any:
    """
    List active products with filtering, sorting and pagination.
    """
    limit = min(query.limit, MAX_PUBLIC_PAGE_SIZE)
    products, total = crud.list_public_products(
        session=session, query=query, limit=limit
    )
    return PaginatedResponse[ProductListItem](
        data=[product_list_item(p) for p in products],
        pagination=Pagination.build(page=query.page, limit=limit, total=total),
        filters=query.model_dump(
            include={"search", "category_id", "featured", "min_price", "max_price"},
            exclude_none=True,
            mode="json",
        ),
        sorting={"sort_by": query.sort_by, "sort_order": query.sort_order},
    )


@router.get("/{slug}", response_model=ApiResponse[ProductDetail])
def read_product(session: SessionDep, slug: str, response: Response) -> Any:
    if not is_valid_slug(slug):
        raise ValidationError("Invalid product slug format", field="slug")
    product = crud.get_active_product_by_slug(session=session, slug=slug)
    if not product:
        raise NotFoundError("Product")
    response.headers["Cache-Control"] = "public, s-maxage=60, stale-while-revalidate=120"
    return ApiResponse(data=product_detail(product))
