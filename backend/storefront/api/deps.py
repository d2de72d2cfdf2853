import logging
import uuid
from collections.abc import Callable, Generator
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import OAuth2PasswordBearer
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlmodel import Session

from storefront.core import security
from storefront.core.config import settings
from storefront.core.db import engine
from storefront.core.errors import (
    ForbiddenError,
    NotFoundError,
    RateLimitError,
    UnauthorizedError,
)
from storefront.core.rate_limit import limiter
from storefront.core.storage import (
    CloudinaryStorage,
    get_image_storage,
    get_optional_image_storage,
)
from storefront.models import Role, TokenPayload, User

logger = logging.getLogger(__name__)

reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/login/access-token", auto_error=False
)


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[str | None, Depends(reusable_oauth2)]
ImageStorageDep = Annotated[CloudinaryStorage, Depends(get_image_storage)]
OptionalImageStorageDep = Annotated[
    CloudinaryStorage | None, Depends(get_optional_image_storage)
]


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    if not token:
        raise UnauthorizedError("Authentication required")
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[security.ALGORITHM]
        )
        token_data = TokenPayload(**payload)
        user_id = uuid.UUID(str(token_data.sub))
    except (InvalidTokenError, ValidationError, ValueError):
        raise UnauthorizedError("Could not validate credentials")
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError("User")
    if not user.is_active or user.deleted_at is not None:
        raise HTTPException(status_code=400, detail="Inactive user")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def require_roles(*roles: Role) -> Callable[[User], User]:
    def check_role(current_user: CurrentUser) -> User:
        if current_user.role not in roles:
            logger.info(
                "User %s with role %s denied, requires %s",
                current_user.id,
                current_user.role.value,
                [r.value for r in roles],
            )
            raise ForbiddenError(
                f"Access denied. Required roles: {', '.join(r.value for r in roles)}"
            )
        return current_user

    return check_role


AdminUser = Annotated[User, Depends(require_roles(Role.ADMIN))]
InventoryUser = Annotated[
    User, Depends(require_roles(Role.ADMIN, Role.INVENTORY_MANAGER))
]


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def _apply_rate_limit(response: Response, *, scope: str, key: str, limit: int) -> None:
    if not settings.RATE_LIMIT_ENABLED:
        return
    result = limiter.hit(
        f"{scope}:{key}", limit=limit, window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS
    )
    if not result.allowed:
        logger.warning("Rate limit exceeded for %s:%s", scope, key)
        raise RateLimitError(
            "Too many requests, please try again later",
            retry_after=result.retry_after or 1,
        )
    response.headers["X-RateLimit-Limit"] = str(result.limit)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = str(int(result.reset_at))


def public_rate_limit(request: Request, response: Response) -> None:
    _apply_rate_limit(
        response,
        scope="public",
        key=f"ip:{client_ip(request)}",
        limit=settings.RATE_LIMIT_PUBLIC,
    )


def auth_rate_limit(request: Request, response: Response) -> None:
    _apply_rate_limit(
        response,
        scope="auth",
        key=f"ip:{client_ip(request)}",
        limit=settings.RATE_LIMIT_AUTH,
    )


def admin_rate_limit(response: Response, current_user: CurrentUser) -> None:
    _apply_rate_limit(
        response,
        scope="admin",
        key=f"user:{current_user.id}",
        limit=settings.RATE_LIMIT_ADMIN,
    )
