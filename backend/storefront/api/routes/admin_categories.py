import logging
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from storefront import crud
from storefront.api.deps import AdminUser, SessionDep, admin_rate_limit
from storefront.api.envelopes import ApiResponse, PaginatedResponse, Pagination
from storefront.api.serializers import category_detail
from storefront.core.errors import NotFoundError
from storefront.models import (
    AdminCategoryQuery,
    Category,
    CategoryAdminDetail,
    CategoryAdminNode,
    CategoryCreate,
    CategoryPublic,
    CategoryUpdate,
)
from storefront.utils.categories import build_tree

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/categories",
    tags=["admin-categories"],
    dependencies=[Depends(admin_rate_limit)],
)

# Products listed on the category detail view
DETAIL_PRODUCT_LIMIT = 10


def get_category_or_404(session: SessionDep, id: uuid.UUID) -> Category:
    category = session.get(Category, id)
    if not category:
        raise NotFoundError("Category")
    return category


@router.get("", response_model=PaginatedResponse[CategoryAdminNode])
def read_admin_categories(
    session: SessionDep,
    current_user: AdminUser,
    query: Annotated[AdminCategoryQuery, Query()],
) -> Any:
    """
    List categories with product and child counts.

    With ``include_children`` every matching category is returned, nested as a tree.
    """
    categories, total = crud.list_admin_categories(
        session=session, query=query, paginate=not query.include_children
    )
    counts = crud.product_counts(session=session, active_only=False)
    children = crud.children_counts(session=session)
    nodes = [
        CategoryAdminNode.model_validate(
            c,
            update={
                "product_count": counts.get(c.id, 0),
                "children_count": children.get(c.id, 0),
            },
        )
        for c in categories
    ]
    if query.include_children:
        nodes = build_tree(nodes)

    return PaginatedResponse[CategoryAdminNode](
        data=nodes,
        pagination=Pagination.build(page=query.page, limit=query.limit, total=total),
        filters=query.model_dump(
            include={"search", "parent_id", "include_children"},
            exclude_none=True,
            mode="json",
        ),
        sorting={"sort_by": query.sort_by, "sort_order": query.sort_order},
    )


@router.post("", status_code=201, response_model=ApiResponse[CategoryPublic])
def create_category(
    *, session: SessionDep, current_user: AdminUser, category_in: CategoryCreate
) -> Any:
    category = crud.create_category(session=session, category_in=category_in)
    logger.info(
        "Category %s (slug=%s) created by %s", category.id, category.slug, current_user.id
    )
    return ApiResponse(
        data=CategoryPublic.model_validate(category),
        message="Category created successfully",
    )


@router.get("/{id}", response_model=ApiResponse[CategoryAdminDetail])
def read_admin_category(session: SessionDep, current_user: AdminUser, id: uuid.UUID) -> Any:
    category = get_category_or_404(session, id)
    return ApiResponse(
        data=category_detail(
            session=session,
            category=category,
            active_only=False,
            product_limit=DETAIL_PRODUCT_LIMIT,
        )
    )


@router.put("/{id}", response_model=ApiResponse[CategoryPublic])
def update_category(
    *,
    session: SessionDep,
    current_user: AdminUser,
    id: uuid.UUID,
    category_in: CategoryUpdate,
) -> Any:
    category = get_category_or_404(session, id)
    category = crud.update_category(
        session=session, db_category=category, category_in=category_in
    )
    logger.info(
        "Category %s updated by %s: %s",
        category.id,
        current_user.id,
        sorted(category_in.model_fields_set),
    )
    return ApiResponse(
        data=CategoryPublic.model_validate(category),
        message="Category updated successfully",
    )


@router.delete("/{id}", response_model=ApiResponse[None])
def delete_category(session: SessionDep, current_user: AdminUser, id: uuid.UUID) -> Any:
    """
    Delete an empty category, its children move up to its parent.
    """
    category = get_category_or_404(session, id)
    crud.delete_category(session=session, db_category=category)
    logger.info("Category %s deleted by %s", id, current_user.id)
    return ApiResponse(data=None, message="Category deleted successfully")
