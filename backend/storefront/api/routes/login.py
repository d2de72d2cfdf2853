import logging
from datetime import timedelta
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm

from storefront import crud
from storefront.api.deps import CurrentUser, SessionDep, auth_rate_limit
from storefront.api.envelopes import ApiResponse
from storefront.core import security
from storefront.core.config import settings
from storefront.models import Token, UserPublic

logger = logging.getLogger(__name__)

router = APIRouter(tags=["login"])


@router.post("/login/access-token", dependencies=[Depends(auth_rate_limit)])
def login_access_token(
    session: SessionDep, form_data: Annotated[OAuth2PasswordRequestForm, Depends()]
) -> Token:
    """
    OAuth2 compatible token login, get an access token for future requests
    """
    user = crud.authenticate(
        session=session, email=form_data.username, password=form_data.password
    )
    if not user:
        logger.info("Failed login for %s", form_data.username)
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    elif not user.is_active or user.deleted_at is not None:
        raise HTTPException(status_code=400, detail="Inactive user")
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return Token(
        access_token=security.create_access_token(
            user.id, expires_delta=access_token_expires, role=user.role
        )
    )


@router.post("/login/test-token", response_model=ApiResponse[UserPublic])
def test_token(current_user: CurrentUser) -> Any:
    """
    Test access token
    """
    return ApiResponse(data=UserPublic.model_validate(current_user))
