import logging

from sqlmodel import Session, SQLModel, create_engine, select

from storefront import crud
from storefront.core.config import settings
from storefront.models import Category, CategoryCreate, Role, User, UserCreate

logger = logging.getLogger(__name__)

engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI))

DEFAULT_CATEGORIES = [
    {
        "name": "Electronics",
        "slug": "electronics",
        "description": "Electronic devices and accessories",
        "sort_order": 1,
    },
    {
        "name": "Clothing",
        "slug": "clothing",
        "description": "Apparel and fashion",
        "sort_order": 2,
        "children": [
            {
                "name": "Shoes",
                "slug": "shoes",
                "description": "Footwear for all occasions",
                "sort_order": 1,
            }
        ],
    },
    {
        "name": "Accessories",
        "slug": "accessories",
        "description": "Bags, watches and more",
        "sort_order": 3,
    },
]


def _seed_categories(session: Session, entries: list[dict], parent: Category | None = None) -> None:
    for entry in entries:
        data = dict(entry)
        children = data.pop("children", [])
        category = session.exec(
            select(Category).where(Category.slug == data["slug"])
        ).first()
        if not category:
            category = crud.create_category(
                session=session,
                category_in=CategoryCreate(
                    **data, parent_id=parent.id if parent else None
                ),
            )
            logger.info("Seeded category %s", category.slug)
        _seed_categories(session, children, category)


def init_db(session: Session) -> None:
    # Tables are created directly from the SQLModel metadata
    SQLModel.metadata.create_all(session.get_bind())

    user = session.exec(
        select(User).where(User.email == settings.FIRST_SUPERUSER)
    ).first()
    if not user:
        user_in = UserCreate(
            email=settings.FIRST_SUPERUSER,
            password=settings.FIRST_SUPERUSER_PASSWORD,
            full_name="Admin User",
            role=Role.ADMIN,
        )
        user = crud.create_user(session=session, user_create=user_in)
        logger.info("Created first superuser %s", user.email)

    _seed_categories(session, DEFAULT_CATEGORIES)
