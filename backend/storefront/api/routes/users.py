import logging
from typing import Any

from fastapi import APIRouter, Depends

from storefront import crud
from storefront.api.deps import CurrentUser, SessionDep, auth_rate_limit
from storefront.api.envelopes import ApiResponse
from storefront.core.errors import ConflictError
from storefront.models import Role, UserCreate, UserPublic, UserRegister

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=ApiResponse[UserPublic])
def read_user_me(current_user: CurrentUser) -> Any:
    """
    Get current user.
    """
    return ApiResponse(data=UserPublic.model_validate(current_user))


@router.post(
    "/signup",
    status_code=201,
    response_model=ApiResponse[UserPublic],
    dependencies=[Depends(auth_rate_limit)],
)
def register_user(session: SessionDep, user_in: UserRegister) -> Any:
    """
    Create new customer account without the need to be logged in.
    """
    user = crud.get_user_by_email(session=session, email=user_in.email)
    if user:
        raise ConflictError(
            "The user with this email already exists in the system", field="email"
        )
    user_create = UserCreate.model_validate(user_in, update={"role": Role.CUSTOMER})
    user = crud.create_user(session=session, user_create=user_create)
    logger.info("Registered user %s", user.id)
    return ApiResponse(
        data=UserPublic.model_validate(user), message="Account created successfully"
    )
