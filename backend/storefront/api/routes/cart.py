import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends

from storefront import crud
from storefront.api.deps import CurrentUser, SessionDep, public_rate_limit
from storefront.api.envelopes import ApiResponse
from storefront.api.serializers import cart_public
from storefront.models import CartItemCreate, CartItemUpdate, CartPublic

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cart",
    tags=["cart"],
    dependencies=[Depends(public_rate_limit)],
)


@router.get("", response_model=ApiResponse[CartPublic])
def read_cart(session: SessionDep, current_user: CurrentUser) -> Any:
    cart = crud.get_or_create_cart(session=session, user=current_user)
    return ApiResponse(data=cart_public(cart))


@router.post("/items", status_code=201, response_model=ApiResponse[CartPublic])
def add_cart_item(
    *, session: SessionDep, current_user: CurrentUser, item_in: CartItemCreate
) -> Any:
    """
    Add a product to the cart, or raise its quantity when already there.
    """
    cart = crud.get_or_create_cart(session=session, user=current_user)
    crud.add_cart_item(session=session, cart=cart, item_in=item_in)
    session.refresh(cart)
    return ApiResponse(data=cart_public(cart), message="Item added to cart")


@router.patch("/items/{item_id}", response_model=ApiResponse[CartPublic])
def update_cart_item(
    *,
    session: SessionDep,
    current_user: CurrentUser,
    item_id: uuid.UUID,
    item_in: CartItemUpdate,
) -> Any:
    cart = crud.get_or_create_cart(session=session, user=current_user)
    item = crud.get_cart_item(session=session, cart=cart, item_id=item_id)
    crud.update_cart_item(session=session, cart=cart, item=item, quantity=item_in.quantity)
    session.refresh(cart)
    return ApiResponse(data=cart_public(cart), message="Cart item updated")


@router.delete("/items/{item_id}", response_model=ApiResponse[CartPublic])
def remove_cart_item(
    session: SessionDep, current_user: CurrentUser, item_id: uuid.UUID
) -> Any:
    cart = crud.get_or_create_cart(session=session, user=current_user)
    item = crud.get_cart_item(session=session, cart=cart, item_id=item_id)
    crud.remove_cart_item(session=session, cart=cart, item=item)
    session.refresh(cart)
    return ApiResponse(data=cart_public(cart), message="Item removed from cart")


@router.delete("", response_model=ApiResponse[CartPublic])
def clear_cart(session: SessionDep, current_user: CurrentUser) -> Any:
    cart = crud.get_or_create_cart(session=session, user=current_user)
    crud.clear_cart(session=session, cart=cart)
    logger.info("Cart %s cleared by %s", cart.id, current_user.id)
    return ApiResponse(data=cart_public(cart), message="Cart cleared")
