import re
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional

from pydantic import ConfigDict, EmailStr, field_validator, model_validator
from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
SKU_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_PRICE = Decimal("99999999.99")
MAX_IMAGES_PER_REQUEST = 10


def get_datetime_utc() -> datetime:
    return datetime.now(timezone.utc)


def _http_url(v: str | None) -> str | None:
    if v and not v.lower().startswith(("http://", "https://")):
        raise ValueError("Invalid image URL")
    return v


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"
    SUPPORT = "SUPPORT"
    INVENTORY_MANAGER = "INVENTORY_MANAGER"


class ProductStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


# Shared properties
class UserBase(SQLModel):
    email: EmailStr = Field(unique=True, index=True, max_length=255)
    is_active: bool = True
    role: Role = Field(default=Role.CUSTOMER)
    full_name: str | None = Field(default=None, max_length=255)


# Properties to receive via API on creation
class UserCreate(UserBase):
    password: str = Field(min_length=8, max_length=128)


class UserRegister(SQLModel):
    email: EmailStr = Field(max_length=255)
    password: str = Field(min_length=8, max_length=128)
    full_name: str | None = Field(default=None, max_length=255)


# Database model, database table inferred from class name
class User(UserBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    hashed_password: str
    failed_login_attempts: int = Field(default=0)
    locked_until: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


# Properties to return via API, id is always required
class UserPublic(UserBase):
    id: uuid.UUID
    created_at: datetime | None = None


# JSON payload containing access token
class Token(SQLModel):
    access_token: str
    token_type: str = "bearer"


# Contents of JWT token
class TokenPayload(SQLModel):
    sub: str | None = None
    role: Role | None = None


# Catalog


class CategoryBase(SQLModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    image_url: str | None = Field(default=None, max_length=500)
    sort_order: int = Field(default=0, ge=0, le=999999)


class CategoryCreate(CategoryBase):
    model_config = ConfigDict(str_strip_whitespace=True)

    slug: str | None = Field(default=None, min_length=1, max_length=100)
    parent_id: uuid.UUID | None = None

    @field_validator("slug")
    @classmethod
    def check_slug(cls, v: str | None) -> str | None:
        if v is not None and not SLUG_PATTERN.match(v):
            raise ValueError("Slug must be lowercase, alphanumeric with hyphens")
        return v

    @field_validator("image_url")
    @classmethod
    def check_image_url(cls, v: str | None) -> str | None:
        return _http_url(v)


# Slug is immutable after creation to keep URLs stable
class CategoryUpdate(SQLModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    image_url: str | None = Field(default=None, max_length=500)
    sort_order: int | None = Field(default=None, ge=0, le=999999)
    parent_id: uuid.UUID | None = None

    @field_validator("image_url")
    @classmethod
    def check_image_url(cls, v: str | None) -> str | None:
        return _http_url(v)


class Category(CategoryBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    slug: str = Field(unique=True, index=True, max_length=100)
    parent_id: uuid.UUID | None = Field(
        default=None, foreign_key="category.id", ondelete="SET NULL", index=True
    )
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


class CategorySummary(SQLModel):
    id: uuid.UUID
    name: str
    slug: str


class CategoryPublic(CategoryBase):
    id: uuid.UUID
    slug: str
    parent_id: uuid.UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    product_count: int = 0


class CategoryAdminListItem(CategoryPublic):
    children_count: int = 0


class CategoryNode(CategoryPublic):
    children: list["CategoryNode"] = []


class CategoryAdminNode(CategoryAdminListItem):
    children: list["CategoryAdminNode"] = []


class CategoryChild(SQLModel):
    id: uuid.UUID
    name: str
    slug: str
    description: str | None = None
    image_url: str | None = None
    sort_order: int = 0
    product_count: int = 0


class CategoryProductSummary(SQLModel):
    id: uuid.UUID
    name: str
    slug: str
    price: Decimal
    status: ProductStatus


class CategoryAdminDetail(CategoryPublic):
    children_count: int = 0
    parent: CategorySummary | None = None
    children: list[CategoryChild] = []
    products: list[CategoryProductSummary] = []
    path: list[CategorySummary] = []


class ProductBase(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    short_description: str | None = Field(default=None, max_length=255)
    price: Decimal = Field(gt=0, le=MAX_PRICE, max_digits=10, decimal_places=2)
    compare_at_price: Decimal | None = Field(
        default=None, gt=0, le=MAX_PRICE, max_digits=10, decimal_places=2
    )
    cost_price: Decimal | None = Field(
        default=None, gt=0, le=MAX_PRICE, max_digits=10, decimal_places=2
    )
    status: ProductStatus = Field(default=ProductStatus.DRAFT, index=True)
    featured: bool = False
    seo_title: str | None = Field(default=None, max_length=60)
    seo_description: str | None = Field(default=None, max_length=160)


class ProductCreate(ProductBase):
    model_config = ConfigDict(str_strip_whitespace=True)

    sku: str = Field(min_length=1, max_length=100)
    category_id: uuid.UUID | None = None

    @field_validator("sku")
    @classmethod
    def check_sku(cls, v: str) -> str:
        if not SKU_PATTERN.match(v):
            raise ValueError(
                "SKU can only contain letters, numbers, hyphens, and underscores"
            )
        return v

    @model_validator(mode="after")
    def check_compare_at_price(self) -> "ProductCreate":
        if self.compare_at_price is not None and self.compare_at_price <= self.price:
            raise ValueError("Compare at price must be greater than regular price")
        return self


# SKU cannot be updated after creation
class ProductUpdate(SQLModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    short_description: str | None = Field(default=None, max_length=255)
    price: Decimal | None = Field(
        default=None, gt=0, le=MAX_PRICE, max_digits=10, decimal_places=2
    )
    compare_at_price: Decimal | None = Field(
        default=None, gt=0, le=MAX_PRICE, max_digits=10, decimal_places=2
    )
    cost_price: Decimal | None = Field(
        default=None, gt=0, le=MAX_PRICE, max_digits=10, decimal_places=2
    )
    status: ProductStatus | None = None
    featured: bool | None = None
    seo_title: str | None = Field(default=None, max_length=60)
    seo_description: str | None = Field(default=None, max_length=160)
    category_id: uuid.UUID | None = None


class Product(ProductBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    sku: str = Field(unique=True, index=True, max_length=100)
    slug: str = Field(unique=True, index=True, max_length=300)
    category_id: uuid.UUID | None = Field(
        default=None, foreign_key="category.id", ondelete="SET NULL", index=True
    )
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    category: Category | None = Relationship()
    images: list["ProductImage"] = Relationship(
        back_populates="product",
        cascade_delete=True,
        sa_relationship_kwargs={"order_by": "ProductImage.sort_order"},
    )
    inventory: Optional["Inventory"] = Relationship(
        back_populates="product", sa_relationship_kwargs={"uselist": False}
    )


class ProductImageBase(SQLModel):
    url: str = Field(max_length=1024)
    alt_text: str | None = Field(default=None, max_length=255)
    sort_order: int = Field(default=0)
    is_primary: bool = False


class ProductImage(ProductImageBase, table=True):
    __tablename__ = "product_image"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    public_id: str | None = Field(default=None, max_length=512)
    product_id: uuid.UUID = Field(
        foreign_key="product.id", nullable=False, ondelete="CASCADE", index=True
    )
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    product: Product | None = Relationship(back_populates="images")


class ProductImagePublic(ProductImageBase):
    id: uuid.UUID
    product_id: uuid.UUID
    created_at: datetime | None = None


class InventoryBase(SQLModel):
    quantity: int = Field(default=0, ge=0)
    reserved_quantity: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=10, ge=0)


class Inventory(InventoryBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    product_id: uuid.UUID = Field(
        foreign_key="product.id", nullable=False, unique=True, index=True
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    product: Product | None = Relationship(back_populates="inventory")


class InventoryPublic(InventoryBase):
    pass


class InventoryUpdate(SQLModel):
    quantity: int | None = Field(default=None, ge=0, le=1_000_000)
    low_stock_threshold: int | None = Field(default=None, ge=0, le=1_000_000)


StockStatus = Literal["out-of-stock", "low-stock", "in-stock"]


class InventoryStatus(InventoryBase):
    available: int
    stock_status: StockStatus


class ProductPublic(ProductBase):
    id: uuid.UUID
    sku: str
    slug: str
    category_id: uuid.UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    category: CategorySummary | None = None
    inventory: InventoryPublic | None = None
    images: list[ProductImagePublic] = []


# Cost price is internal and never leaves admin responses
class ProductListItem(ProductBase):
    cost_price: Decimal | None = Field(default=None, exclude=True)
    id: uuid.UUID
    sku: str
    slug: str
    category_id: uuid.UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    category: CategorySummary | None = None
    images: list[ProductImagePublic] = []
    in_stock: bool = False
    low_stock: bool = False


class ProductDetail(ProductBase):
    cost_price: Decimal | None = Field(default=None, exclude=True)
    id: uuid.UUID
    slug: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    category: CategorySummary | None = None
    images: list[ProductImagePublic] = []
    inventory: InventoryStatus | None = None


class CategoryProductListing(SQLModel):
    category: CategoryAdminDetail
    products: list[ProductListItem]


# Image payloads, validated further by storefront.utils.images


class ImageUploadItem(SQLModel):
    image: str = Field(min_length=1)
    alt_text: str | None = Field(default=None, max_length=255)
    is_primary: bool = False


class ImageUploadRequest(SQLModel):
    image: str | None = Field(default=None, min_length=1)
    alt_text: str | None = Field(default=None, max_length=255)
    is_primary: bool = False
    images: list[ImageUploadItem] | None = Field(
        default=None, min_length=1, max_length=MAX_IMAGES_PER_REQUEST
    )

    @model_validator(mode="after")
    def check_shape(self) -> "ImageUploadRequest":
        if self.image is None and self.images is None:
            raise ValueError('Request must contain either "image" or "images" field')
        if self.image is not None and self.images is not None:
            raise ValueError('Request must not contain both "image" and "images"')
        if self.images is not None:
            if sum(1 for item in self.images if item.is_primary) > 1:
                raise ValueError("Only one image can be marked as primary")
        return self

    def entries(self) -> list[ImageUploadItem]:
        if self.images is not None:
            return self.images
        if self.image is None:
            return []
        return [
            ImageUploadItem(
                image=self.image, alt_text=self.alt_text, is_primary=self.is_primary
            )
        ]


class ImageUpdate(SQLModel):
    alt_text: str | None = Field(default=None, max_length=255)
    is_primary: bool | None = None


class ImageOrder(SQLModel):
    image_id: uuid.UUID
    sort_order: int = Field(ge=0, le=999)


class ImageReorderRequest(SQLModel):
    image_orders: list[ImageOrder] = Field(min_length=1, max_length=20)

    @field_validator("image_orders")
    @classmethod
    def check_unique(cls, v: list[ImageOrder]) -> list[ImageOrder]:
        if len({o.image_id for o in v}) != len(v):
            raise ValueError("Duplicate image IDs are not allowed")
        if len({o.sort_order for o in v}) != len(v):
            raise ValueError("Duplicate sort orders are not allowed")
        return v


# Cart


class Cart(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(
        foreign_key="user.id", nullable=False, unique=True, ondelete="CASCADE"
    )
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    items: list["CartItem"] = Relationship(
        back_populates="cart",
        cascade_delete=True,
        sa_relationship_kwargs={"order_by": "CartItem.created_at"},
    )


class CartItem(SQLModel, table=True):
    __tablename__ = "cart_item"
    __table_args__ = (UniqueConstraint("cart_id", "product_id"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    cart_id: uuid.UUID = Field(
        foreign_key="cart.id", nullable=False, ondelete="CASCADE", index=True
    )
    product_id: uuid.UUID = Field(foreign_key="product.id", nullable=False, index=True)
    quantity: int = Field(default=1, ge=1)
    price: Decimal = Field(max_digits=10, decimal_places=2)
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    cart: Cart | None = Relationship(back_populates="items")
    product: Product | None = Relationship()


class CartItemCreate(SQLModel):
    product_id: uuid.UUID
    quantity: int = Field(default=1, ge=1, le=99)


class CartItemUpdate(SQLModel):
    quantity: int = Field(ge=1, le=99)


class CartProductSummary(SQLModel):
    id: uuid.UUID
    name: str
    slug: str
    sku: str
    image_url: str | None = None


class CartItemPublic(SQLModel):
    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    price: Decimal
    line_total: Decimal
    product: CartProductSummary | None = None


class CartPublic(SQLModel):
    id: uuid.UUID
    items: list[CartItemPublic]
    item_count: int
    subtotal: Decimal


# Query parameters


SortOrder = Literal["asc", "desc"]


class PageQuery(SQLModel):
    page: int = Field(default=1, ge=1, le=1000)
    limit: int = Field(default=10, ge=1, le=100)


class PublicProductQuery(PageQuery):
    limit: int = Field(default=12, ge=1, le=100)
    search: str | None = Field(default=None, max_length=200)
    category_id: uuid.UUID | None = None
    featured: bool | None = None
    min_price: Decimal | None = Field(default=None, ge=0)
    max_price: Decimal | None = Field(default=None, ge=0)
    sort_by: Literal["name", "price", "created_at", "updated_at"] = "created_at"
    sort_order: SortOrder = "desc"

    @model_validator(mode="after")
    def check_price_range(self) -> "PublicProductQuery":
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError("min_price must be less than or equal to max_price")
        return self


class AdminProductQuery(PageQuery):
    search: str | None = Field(default=None, max_length=200)
    category_id: uuid.UUID | None = None
    status: ProductStatus | None = None
    featured: bool | None = None
    sort_by: Literal["name", "price", "created_at", "updated_at"] = "created_at"
    sort_order: SortOrder = "desc"


class AdminCategoryQuery(PageQuery):
    limit: int = Field(default=100, ge=1, le=100)
    search: str | None = Field(default=None, max_length=200)
    # "root" or "null" selects top-level categories
    parent_id: str | None = None
    include_children: bool | None = None
    sort_by: Literal["name", "sort_order", "created_at", "updated_at"] = "sort_order"
    sort_order: SortOrder = "asc"

    @field_validator("parent_id")
    @classmethod
    def check_parent_id(cls, v: str | None) -> str | None:
        if v is None or v in ("root", "null"):
            return v
        try:
            uuid.UUID(v)
        except ValueError:
            raise ValueError("Invalid parent ID format")
        return v


class PublicCategoryQuery(SQLModel):
    include_children: bool = False
    only_with_products: bool = True


class CategoryProductQuery(PageQuery):
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: Literal["name", "price", "created_at", "featured"] = "featured"
    sort_order: SortOrder = "desc"


# Generic message
class Message(SQLModel):
    message: str
