from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response
from sqlmodel import col, select

from storefront import crud
from storefront.api.deps import SessionDep, public_rate_limit
from storefront.api.envelopes import ApiResponse, Pagination, build_meta
from storefront.api.serializers import category_detail, product_list_item
from storefront.core.errors import NotFoundError, ValidationError
from storefront.models import (
    Category,
    CategoryNode,
    CategoryProductListing,
    CategoryProductQuery,
    PublicCategoryQuery,
)
from storefront.utils.categories import build_tree
from storefront.utils.slug import is_valid_slug

router = APIRouter(
    prefix="/categories",
    tags=["categories"],
    dependencies=[Depends(public_rate_limit)],
)

CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=600"


class CategoryDetailResponse(ApiResponse[CategoryProductListing]):
    pagination: Pagination


def _has_products(node: CategoryNode) -> bool:
    return node.product_count > 0 or any(_has_products(c) for c in node.children)


def _prune_empty(tree: list[CategoryNode]) -> list[CategoryNode]:
    pruned = []
    for node in tree:
        if _has_products(node):
            pruned.append(
                node.model_copy(update={"children": _prune_empty(node.children)})
            )
    return pruned


@router.get("", response_model=ApiResponse[list[CategoryNode]])
def read_categories(
    session: SessionDep,
    response: Response,
    query: Annotated[PublicCategoryQuery, Query()],
) -> Any:
    """
    List categories, flat or as a tree, with active product counts.
    """
    counts = crud.product_counts(session=session, active_only=True)
    categories = session.exec(
        select(Category).order_by(col(Category.sort_order), col(Category.name))
    ).all()
    nodes = [
        CategoryNode.model_validate(c, update={"product_count": counts.get(c.id, 0)})
        for c in categories
    ]

    if query.include_children:
        data = build_tree(nodes)
        if query.only_with_products:
            data = _prune_empty(data)
    else:
        data = [n for n in nodes if n.product_count > 0] if query.only_with_products else nodes

    response.headers["Cache-Control"] = CACHE_CONTROL
    return ApiResponse(
        data=data,
        meta=build_meta(total=len(data)),
    )


@router.get("/{slug}", response_model=CategoryDetailResponse)
def read_category(
    session: SessionDep,
    slug: str,
    response: Response,
    query: Annotated[CategoryProductQuery, Query()],
) -> Any:
    """
    Category with its breadcrumb, children and a page of its active products.
    """
    if not is_valid_slug(slug):
        raise ValidationError("Invalid category slug format", field="slug")
    category = crud.get_category_by_slug(session=session, slug=slug)
    if not category:
        raise NotFoundError("Category")

    detail = category_detail(session=session, category=category, active_only=True)
    products, total = crud.list_category_products(
        session=session, category_id=category.id, query=query
    )
    response.headers["Cache-Control"] = CACHE_CONTROL
    return CategoryDetailResponse(
        data=CategoryProductListing(
            category=detail, products=[product_list_item(p) for p in products]
        ),
        pagination=Pagination.build(page=query.page, limit=query.limit, total=total),
    )
