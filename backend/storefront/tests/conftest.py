from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from storefront.api.deps import get_db
from storefront.core.config import settings
from storefront.core.rate_limit import limiter
from storefront.core.storage import get_image_storage, get_optional_image_storage
from storefront.main import app
from storefront.models import Role, User
from storefront.tests.utils.storage import FakeImageStorage
from storefront.tests.utils.user import make_user, token_headers


@pytest.fixture(name="session")
def session_fixture() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="storage")
def storage_fixture() -> FakeImageStorage:
    return FakeImageStorage()


@pytest.fixture(name="client")
def client_fixture(
    session: Session, storage: FakeImageStorage
) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_db] = lambda: session
    app.dependency_overrides[get_image_storage] = lambda: storage
    app.dependency_overrides[get_optional_image_storage] = lambda: storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_rate_limits(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    limiter.reset()
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", False)
    yield
    limiter.reset()


@pytest.fixture
def admin_user(session: Session) -> User:
    return make_user(session, "admin@example.com", Role.ADMIN)


@pytest.fixture
def customer_user(session: Session) -> User:
    return make_user(session, "customer@example.com", Role.CUSTOMER)


@pytest.fixture
def admin_headers(admin_user: User) -> dict[str, str]:
    return token_headers(admin_user)


@pytest.fixture
def customer_headers(customer_user: User) -> dict[str, str]:
    return token_headers(customer_user)


@pytest.fixture
def inventory_headers(session: Session) -> dict[str, str]:
    return token_headers(make_user(session, "stock@example.com", Role.INVENTORY_MANAGER))
