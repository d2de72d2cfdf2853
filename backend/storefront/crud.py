import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, or_
from sqlmodel import Session, col, select

from storefront.core.config import settings
from storefront.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnprocessableEntityError,
    ValidationError,
)
from storefront.core.security import get_password_hash, verify_password
from storefront.models import (
    AdminCategoryQuery,
    AdminProductQuery,
    Cart,
    CartItem,
    CartItemCreate,
    Category,
    CategoryCreate,
    CategoryProductQuery,
    CategoryUpdate,
    ImageOrder,
    ImageUpdate,
    Inventory,
    InventoryUpdate,
    Product,
    ProductCreate,
    ProductImage,
    ProductStatus,
    ProductUpdate,
    PublicProductQuery,
    User,
    UserCreate,
    get_datetime_utc,
)
from storefront.utils.categories import has_circular_reference
from storefront.utils.images import MAX_IMAGES_PER_PRODUCT, sanitize_alt_text
from storefront.utils.slug import generate_slug, unique_slug

MAX_CART_ITEM_QUANTITY = 99


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _reject_nulls(data: dict[str, Any], fields: Sequence[str]) -> None:
    for field in fields:
        if field in data and data[field] is None:
            raise ValidationError(f"{field} cannot be null", field=field)


# Users


def create_user(*, session: Session, user_create: UserCreate) -> User:
    db_obj = User.model_validate(
        user_create, update={"hashed_password": get_password_hash(user_create.password)}
    )
    session.add(db_obj)
    session.commit()
    session.refresh(db_obj)
    return db_obj


def get_user_by_email(*, session: Session, email: str) -> User | None:
    statement = select(User).where(User.email == email)
    session_user = session.exec(statement).first()
    return session_user


# Dummy hash to use for timing attack prevention when user is not found
# This is an Argon2 hash of a random password, used to ensure constant-time comparison
DUMMY_HASH = "$argon2id$v=19$m=65536,t=3,p=4$MjQyZWE1MzBjYjJlZTI0Yw$YTU4NGM5ZTZmYjE2NzZlZjY0ZWY3ZGRkY2U2OWFjNjk"


def is_locked(user: User) -> bool:
    return user.locked_until is not None and as_utc(user.locked_until) > get_datetime_utc()


def register_failed_login(*, session: Session, db_user: User) -> None:
    db_user.failed_login_attempts += 1
    if db_user.failed_login_attempts >= settings.MAX_FAILED_LOGIN_ATTEMPTS:
        db_user.locked_until = get_datetime_utc() + timedelta(
            minutes=settings.ACCOUNT_LOCKOUT_MINUTES
        )
    session.add(db_user)
    session.commit()


def authenticate(*, session: Session, email: str, password: str) -> User | None:
    db_user = get_user_by_email(session=session, email=email)
    if not db_user:
        # Prevent timing attacks by running password verification even when user doesn't exist
        # This ensures the response time is similar whether or not the email exists
        verify_password(password, DUMMY_HASH)
        return None
    if is_locked(db_user):
        raise ForbiddenError("Account is temporarily locked. Try again later.")
    verified, updated_password_hash = verify_password(password, db_user.hashed_password)
    if not verified:
        register_failed_login(session=session, db_user=db_user)
        return None
    if updated_password_hash or db_user.failed_login_attempts or db_user.locked_until:
        if updated_password_hash:
            db_user.hashed_password = updated_password_hash
        db_user.failed_login_attempts = 0
        db_user.locked_until = None
        session.add(db_user)
        session.commit()
        session.refresh(db_user)
    return db_user


# Categories


def get_category_by_slug(*, session: Session, slug: str) -> Category | None:
    return session.exec(select(Category).where(Category.slug == slug)).first()


def _category_slug_taken(session: Session, slug: str) -> bool:
    return get_category_by_slug(session=session, slug=slug) is not None


def category_parents(*, session: Session) -> dict[uuid.UUID, uuid.UUID | None]:
    rows = session.exec(select(Category.id, Category.parent_id)).all()
    return {cid: pid for cid, pid in rows}


def product_counts(
    *, session: Session, active_only: bool
) -> dict[uuid.UUID, int]:
    statement = (
        select(Product.category_id, func.count(col(Product.id)))
        .where(col(Product.category_id).is_not(None))
        .where(col(Product.deleted_at).is_(None))
        .group_by(col(Product.category_id))
    )
    if active_only:
        statement = statement.where(Product.status == ProductStatus.ACTIVE)
    return {cid: count for cid, count in session.exec(statement).all()}


def children_counts(*, session: Session) -> dict[uuid.UUID, int]:
    statement = (
        select(Category.parent_id, func.count(col(Category.id)))
        .where(col(Category.parent_id).is_not(None))
        .group_by(col(Category.parent_id))
    )
    return {pid: count for pid, count in session.exec(statement).all()}


def create_category(*, session: Session, category_in: CategoryCreate) -> Category:
    if category_in.parent_id is not None and not session.get(
        Category, category_in.parent_id
    ):
        raise ValidationError("Parent category not found", field="parent_id")
    base = category_in.slug or generate_slug(category_in.name)
    slug = unique_slug(base, lambda s: _category_slug_taken(session, s))
    db_category = Category.model_validate(category_in, update={"slug": slug})
    session.add(db_category)
    session.commit()
    session.refresh(db_category)
    return db_category


def update_category(
    *, session: Session, db_category: Category, category_in: CategoryUpdate
) -> Category:
    data = category_in.model_dump(exclude_unset=True)
    if not data:
        raise ValidationError("No fields to update")
    _reject_nulls(data, ("name", "sort_order"))

    if data.get("parent_id") is not None:
        parent_id = data["parent_id"]
        if not session.get(Category, parent_id):
            raise ValidationError("Parent category not found", field="parent_id")
        if has_circular_reference(
            db_category.id, parent_id, category_parents(session=session)
        ):
            raise ValidationError(
                "Cannot set parent: would create circular reference",
                field="parent_id",
            )

    db_category.sqlmodel_update(data, update={"updated_at": get_datetime_utc()})
    session.add(db_category)
    session.commit()
    session.refresh(db_category)
    return db_category


def delete_category(*, session: Session, db_category: Category) -> None:
    product_count = session.exec(
        select(func.count(col(Product.id)))
        .where(Product.category_id == db_category.id)
        .where(col(Product.deleted_at).is_(None))
    ).one()
    if product_count:
        raise ConflictError(
            f"Cannot delete category with {product_count} active products. "
            "Please reassign or delete products first."
        )

    children = session.exec(
        select(Category).where(Category.parent_id == db_category.id)
    ).all()
    for child in children:
        child.parent_id = db_category.parent_id
        child.updated_at = get_datetime_utc()
        session.add(child)

    # Only soft-deleted products can still point here
    archived = session.exec(
        select(Product).where(Product.category_id == db_category.id)
    ).all()
    for product in archived:
        product.category_id = None
        session.add(product)

    session.flush()
    session.delete(db_category)
    session.commit()


def list_admin_categories(
    *, session: Session, query: AdminCategoryQuery, paginate: bool = True
) -> tuple[list[Category], int]:
    conditions: list[Any] = []
    if query.search:
        pattern = f"%{query.search}%"
        conditions.append(
            or_(col(Category.name).ilike(pattern), col(Category.description).ilike(pattern))
        )
    if query.parent_id in ("root", "null"):
        conditions.append(col(Category.parent_id).is_(None))
    elif query.parent_id is not None:
        conditions.append(Category.parent_id == uuid.UUID(query.parent_id))

    count = session.exec(
        select(func.count()).select_from(Category).where(*conditions)
    ).one()

    sort_column = col(getattr(Category, query.sort_by))
    order = sort_column.asc() if query.sort_order == "asc" else sort_column.desc()
    statement = select(Category).where(*conditions).order_by(order, col(Category.name))
    if paginate:
        statement = statement.offset((query.page - 1) * query.limit).limit(query.limit)
    return list(session.exec(statement).all()), count


# Products


def get_product_by_sku(*, session: Session, sku: str) -> Product | None:
    return session.exec(select(Product).where(Product.sku == sku)).first()


def get_active_product_by_slug(*, session: Session, slug: str) -> Product | None:
    statement = (
        select(Product)
        .where(Product.slug == slug)
        .where(Product.status == ProductStatus.ACTIVE)
        .where(col(Product.deleted_at).is_(None))
    )
    return session.exec(statement).first()


def _product_slug_taken(
    session: Session, slug: str, exclude_id: uuid.UUID | None = None
) -> bool:
    statement = select(Product.id).where(Product.slug == slug)
    if exclude_id is not None:
        statement = statement.where(Product.id != exclude_id)
    return session.exec(statement).first() is not None


def _check_category(session: Session, category_id: uuid.UUID | None) -> None:
    if category_id is not None and not session.get(Category, category_id):
        raise ValidationError("Category not found", field="category_id")


def create_product(*, session: Session, product_in: ProductCreate) -> Product:
    if get_product_by_sku(session=session, sku=product_in.sku):
        raise ConflictError("Product with this SKU already exists", field="sku")
    _check_category(session, product_in.category_id)

    slug = unique_slug(
        generate_slug(product_in.name),
        lambda s: _product_slug_taken(session, s),
        max_length=300,
    )
    db_product = Product.model_validate(product_in, update={"slug": slug})
    db_product.inventory = Inventory(
        quantity=0, reserved_quantity=0, low_stock_threshold=10
    )
    session.add(db_product)
    session.commit()
    session.refresh(db_product)
    return db_product


def update_product(
    *, session: Session, db_product: Product, product_in: ProductUpdate
) -> Product:
    data = product_in.model_dump(exclude_unset=True)
    if not data:
        raise ValidationError("No fields to update")
    _reject_nulls(data, ("name", "price", "status", "featured"))

    if "category_id" in data:
        _check_category(session, data["category_id"])

    price = data.get("price", db_product.price)
    compare_at_price = data.get("compare_at_price", db_product.compare_at_price)
    if compare_at_price is not None and compare_at_price <= price:
        raise ValidationError(
            "Compare at price must be greater than regular price",
            field="compare_at_price",
        )

    extra: dict[str, Any] = {"updated_at": get_datetime_utc()}
    if "name" in data and data["name"] != db_product.name:
        extra["slug"] = unique_slug(
            generate_slug(data["name"]),
            lambda s: _product_slug_taken(session, s, exclude_id=db_product.id),
            max_length=300,
        )

    db_product.sqlmodel_update(data, update=extra)
    session.add(db_product)
    session.commit()
    session.refresh(db_product)
    return db_product


def soft_delete_product(*, session: Session, db_product: Product) -> Product:
    if db_product.deleted_at is not None:
        raise ConflictError("Product is already deleted")
    now = get_datetime_utc()
    db_product.deleted_at = now
    db_product.updated_at = now
    db_product.status = ProductStatus.ARCHIVED
    session.add(db_product)
    session.commit()
    session.refresh(db_product)
    return db_product


def _paginate_products(
    session: Session,
    conditions: list[Any],
    order_by: list[Any],
    page: int,
    limit: int,
) -> tuple[list[Product], int]:
    count = session.exec(
        select(func.count()).select_from(Product).where(*conditions)
    ).one()
    statement = (
        select(Product)
        .where(*conditions)
        .order_by(*order_by, col(Product.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(session.exec(statement).all()), count


def _order(field: str, direction: str) -> Any:
    column = col(getattr(Product, field))
    return column.asc() if direction == "asc" else column.desc()


def list_public_products(
    *, session: Session, query: PublicProductQuery, limit: int
) -> tuple[list[Product], int]:
    conditions: list[Any] = [
        Product.status == ProductStatus.ACTIVE,
        col(Product.deleted_at).is_(None),
    ]
    if query.search:
        conditions.append(col(Product.name).ilike(f"%{query.search}%"))
    if query.category_id is not None:
        conditions.append(Product.category_id == query.category_id)
    if query.featured is not None:
        conditions.append(Product.featured == query.featured)
    if query.min_price is not None:
        conditions.append(Product.price >= query.min_price)
    if query.max_price is not None:
        conditions.append(Product.price <= query.max_price)
    return _paginate_products(
        session,
        conditions,
        [_order(query.sort_by, query.sort_order)],
        query.page,
        limit,
    )


def list_admin_products(
    *, session: Session, query: AdminProductQuery
) -> tuple[list[Product], int]:
    conditions: list[Any] = [col(Product.deleted_at).is_(None)]
    if query.search:
        pattern = f"%{query.search}%"
        conditions.append(
            or_(col(Product.name).ilike(pattern), col(Product.sku).ilike(pattern))
        )
    if query.category_id is not None:
        conditions.append(Product.category_id == query.category_id)
    if query.status is not None:
        conditions.append(Product.status == query.status)
    if query.featured is not None:
        conditions.append(Product.featured == query.featured)
    return _paginate_products(
        session,
        conditions,
        [_order(query.sort_by, query.sort_order)],
        query.page,
        query.limit,
    )


def list_category_products(
    *, session: Session, category_id: uuid.UUID, query: CategoryProductQuery
) -> tuple[list[Product], int]:
    conditions: list[Any] = [
        Product.category_id == category_id,
        Product.status == ProductStatus.ACTIVE,
        col(Product.deleted_at).is_(None),
    ]
    if query.sort_by == "featured":
        # Featured first, newest within each group
        order_by = [col(Product.featured).desc(), col(Product.created_at).desc()]
    else:
        order_by = [_order(query.sort_by, query.sort_order)]
    return _paginate_products(session, conditions, order_by, query.page, query.limit)


def update_inventory(
    *, session: Session, db_product: Product, inventory_in: InventoryUpdate
) -> Inventory:
    data = inventory_in.model_dump(exclude_unset=True, exclude_none=True)
    if not data:
        raise ValidationError("No fields to update")
    inventory = db_product.inventory or Inventory(product_id=db_product.id)
    quantity = data.get("quantity", inventory.quantity)
    if quantity < inventory.reserved_quantity:
        raise UnprocessableEntityError(
            f"Quantity cannot be less than reserved quantity ({inventory.reserved_quantity})"
        )
    inventory.sqlmodel_update(data, update={"updated_at": get_datetime_utc()})
    session.add(inventory)
    session.commit()
    session.refresh(inventory)
    return inventory


def available_stock(product: Product) -> int:
    if product.inventory is None:
        return 0
    return max(0, product.inventory.quantity - product.inventory.reserved_quantity)


# Product images


def get_product_image(
    *, session: Session, product_id: uuid.UUID, image_id: uuid.UUID
) -> ProductImage:
    image = session.get(ProductImage, image_id)
    if not image or image.product_id != product_id:
        raise NotFoundError("Image")
    return image


def check_image_capacity(*, db_product: Product, incoming: int) -> None:
    current = len(db_product.images)
    if current + incoming > MAX_IMAGES_PER_PRODUCT:
        raise UnprocessableEntityError(
            f"Product already has {current} images. Maximum {MAX_IMAGES_PER_PRODUCT} "
            f"images allowed. You can upload {max(0, MAX_IMAGES_PER_PRODUCT - current)} more."
        )


def add_product_images(
    *,
    session: Session,
    db_product: Product,
    uploads: Sequence[tuple[str, str | None, str | None, bool]],
) -> list[ProductImage]:
    """
    Record uploaded images for a product.

    ``uploads`` holds ``(url, public_id, alt_text, is_primary)`` tuples in upload
    order. New images are appended after the current highest sort order. The
    first image of a product becomes primary when none is requested.
    """
    existing = list(db_product.images)
    next_sort = max((i.sort_order for i in existing), default=-1) + 1
    wants_primary = any(is_primary for *_, is_primary in uploads)
    has_primary = any(i.is_primary for i in existing)

    if wants_primary:
        for image in existing:
            if image.is_primary:
                image.is_primary = False
                session.add(image)

    created = []
    for offset, (url, public_id, alt_text, is_primary) in enumerate(uploads):
        primary = is_primary if wants_primary else (not has_primary and offset == 0)
        image = ProductImage(
            product_id=db_product.id,
            url=url,
            public_id=public_id,
            alt_text=sanitize_alt_text(alt_text) or db_product.name[:255],
            sort_order=next_sort + offset,
            is_primary=primary,
        )
        session.add(image)
        created.append(image)

    session.commit()
    for image in created:
        session.refresh(image)
    return created


def set_primary_image(*, session: Session, db_image: ProductImage) -> ProductImage:
    others = session.exec(
        select(ProductImage)
        .where(ProductImage.product_id == db_image.product_id)
        .where(ProductImage.id != db_image.id)
        .where(ProductImage.is_primary == True)  # noqa: E712
    ).all()
    for other in others:
        other.is_primary = False
        session.add(other)
    db_image.is_primary = True
    session.add(db_image)
    session.commit()
    session.refresh(db_image)
    return db_image


def update_product_image(
    *, session: Session, db_image: ProductImage, image_in: ImageUpdate
) -> ProductImage:
    data = image_in.model_dump(exclude_unset=True)
    if not data:
        raise ValidationError("No fields to update")
    if "alt_text" in data:
        db_image.alt_text = sanitize_alt_text(data["alt_text"]) or None
    if data.get("is_primary") is True:
        return set_primary_image(session=session, db_image=db_image)
    if data.get("is_primary") is False:
        db_image.is_primary = False
    session.add(db_image)
    session.commit()
    session.refresh(db_image)
    return db_image


def reorder_product_images(
    *, session: Session, db_product: Product, image_orders: Sequence[ImageOrder]
) -> list[ProductImage]:
    by_id = {image.id: image for image in db_product.images}
    unknown = [o.image_id for o in image_orders if o.image_id not in by_id]
    if unknown:
        raise ValidationError(
            "Some images do not belong to this product",
            field="image_orders",
        )
    for order in image_orders:
        image = by_id[order.image_id]
        image.sort_order = order.sort_order
        session.add(image)
    session.commit()
    return list_product_images(session=session, product_id=db_product.id)


def list_product_images(
    *, session: Session, product_id: uuid.UUID
) -> list[ProductImage]:
    statement = (
        select(ProductImage)
        .where(ProductImage.product_id == product_id)
        .order_by(col(ProductImage.sort_order), col(ProductImage.created_at))
    )
    return list(session.exec(statement).all())


def delete_product_image(*, session: Session, db_image: ProductImage) -> None:
    product_id = db_image.product_id
    was_primary = db_image.is_primary
    session.delete(db_image)
    session.flush()
    if was_primary:
        successor = session.exec(
            select(ProductImage)
            .where(ProductImage.product_id == product_id)
            .order_by(col(ProductImage.sort_order), col(ProductImage.created_at))
        ).first()
        if successor:
            successor.is_primary = True
            session.add(successor)
    session.commit()


# Cart


def get_or_create_cart(*, session: Session, user: User) -> Cart:
    cart = session.exec(select(Cart).where(Cart.user_id == user.id)).first()
    if cart:
        return cart
    cart = Cart(user_id=user.id)
    session.add(cart)
    session.commit()
    session.refresh(cart)
    return cart


def get_cart_item(*, session: Session, cart: Cart, item_id: uuid.UUID) -> CartItem:
    item = session.get(CartItem, item_id)
    if not item or item.cart_id != cart.id:
        raise NotFoundError("Cart item")
    return item


def _check_stock(product: Product, quantity: int) -> None:
    if quantity > MAX_CART_ITEM_QUANTITY:
        raise UnprocessableEntityError(
            f"Maximum quantity per item is {MAX_CART_ITEM_QUANTITY}"
        )
    available = available_stock(product)
    if quantity > available:
        raise UnprocessableEntityError(f"Only {available} items available in stock")


def _purchasable_product(session: Session, product_id: uuid.UUID) -> Product:
    product = session.get(Product, product_id)
    if (
        not product
        or product.status != ProductStatus.ACTIVE
        or product.deleted_at is not None
    ):
        raise NotFoundError("Product")
    return product


def _touch(session: Session, cart: Cart) -> None:
    cart.updated_at = get_datetime_utc()
    session.add(cart)


def add_cart_item(
    *, session: Session, cart: Cart, item_in: CartItemCreate
) -> CartItem:
    product = _purchasable_product(session, item_in.product_id)
    item = session.exec(
        select(CartItem)
        .where(CartItem.cart_id == cart.id)
        .where(CartItem.product_id == product.id)
    ).first()
    quantity = item_in.quantity + (item.quantity if item else 0)
    _check_stock(product, quantity)

    if item:
        item.quantity = quantity
        item.price = product.price
        item.updated_at = get_datetime_utc()
    else:
        item = CartItem(
            cart_id=cart.id,
            product_id=product.id,
            quantity=quantity,
            price=product.price,
        )
    session.add(item)
    _touch(session, cart)
    session.commit()
    session.refresh(item)
    return item


def update_cart_item(
    *, session: Session, cart: Cart, item: CartItem, quantity: int
) -> CartItem:
    product = _purchasable_product(session, item.product_id)
    _check_stock(product, quantity)
    item.quantity = quantity
    item.updated_at = get_datetime_utc()
    session.add(item)
    _touch(session, cart)
    session.commit()
    session.refresh(item)
    return item


def remove_cart_item(*, session: Session, cart: Cart, item: CartItem) -> None:
    session.delete(item)
    _touch(session, cart)
    session.commit()


def clear_cart(*, session: Session, cart: Cart) -> None:
    for item in list(cart.items):
        session.delete(item)
    _touch(session, cart)
    session.commit()
    session.refresh(cart)
