"""Conversions from table rows to the response shapes used by several routers."""
from decimal import Decimal

from sqlmodel import Session, col, select

from storefront import crud
from storefront.models import (
    Cart,
    CartItemPublic,
    CartProductSummary,
    CartPublic,
    Category,
    CategoryAdminDetail,
    CategoryChild,
    CategoryProductSummary,
    CategorySummary,
    Inventory,
    InventoryStatus,
    Product,
    ProductDetail,
    ProductImagePublic,
    ProductListItem,
    StockStatus,
)
from storefront.utils.categories import category_path


def stock_status(available: int, low_stock_threshold: int) -> StockStatus:
    if available <= 0:
        return "out-of-stock"
    if available <= low_stock_threshold:
        return "low-stock"
    return "in-stock"


def inventory_status(inventory: Inventory) -> InventoryStatus:
    available = max(0, inventory.quantity - inventory.reserved_quantity)
    return InventoryStatus(
        quantity=inventory.quantity,
        reserved_quantity=inventory.reserved_quantity,
        low_stock_threshold=inventory.low_stock_threshold,
        available=available,
        stock_status=stock_status(available, inventory.low_stock_threshold),
    )


def product_list_item(product: Product) -> ProductListItem:
    inventory = product.inventory
    quantity = inventory.quantity if inventory else 0
    threshold = inventory.low_stock_threshold if inventory else 0
    return ProductListItem.model_validate(
        product,
        update={
            "in_stock": quantity > 0,
            "low_stock": 0 < quantity <= threshold,
        },
    )


def product_detail(product: Product) -> ProductDetail:
    images = [
        ProductImagePublic.model_validate(
            image, update={"alt_text": image.alt_text or product.name}
        )
        for image in product.images
    ]
    return ProductDetail.model_validate(
        product,
        update={
            "images": images,
            "inventory": inventory_status(product.inventory)
            if product.inventory
            else None,
        },
    )


def category_detail(
    *,
    session: Session,
    category: Category,
    active_only: bool,
    product_limit: int = 0,
) -> CategoryAdminDetail:
    """
    Category with its parent, children, breadcrumb path and product counts.

    ``active_only`` restricts counts (and listed products) to ACTIVE products,
    soft-deleted products are never counted.
    """
    counts = crud.product_counts(session=session, active_only=active_only)
    all_categories = session.exec(select(Category)).all()
    by_id = {c.id: c for c in all_categories}

    children = sorted(
        (c for c in all_categories if c.parent_id == category.id),
        key=lambda c: (c.sort_order, c.name.lower()),
    )
    parent = by_id.get(category.parent_id) if category.parent_id else None

    products: list[CategoryProductSummary] = []
    if product_limit:
        statement = (
            select(Product)
            .where(Product.category_id == category.id)
            .where(col(Product.deleted_at).is_(None))
            .order_by(col(Product.created_at).desc())
            .limit(product_limit)
        )
        products = [
            CategoryProductSummary.model_validate(p)
            for p in session.exec(statement).all()
        ]

    return CategoryAdminDetail.model_validate(
        category,
        update={
            "product_count": counts.get(category.id, 0),
            "children_count": len(children),
            "parent": CategorySummary.model_validate(parent) if parent else None,
            "children": [
                CategoryChild.model_validate(
                    c, update={"product_count": counts.get(c.id, 0)}
                )
                for c in children
            ],
            "products": products,
            "path": [
                CategorySummary.model_validate(c)
                for c in category_path(category, by_id)
            ],
        },
    )


def _primary_image_url(product: Product) -> str | None:
    for image in product.images:
        if image.is_primary:
            return image.url
    return product.images[0].url if product.images else None


def cart_public(cart: Cart) -> CartPublic:
    items = []
    for item in cart.items:
        product = item.product
        items.append(
            CartItemPublic(
                id=item.id,
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price,
                line_total=item.price * item.quantity,
                product=CartProductSummary(
                    id=product.id,
                    name=product.name,
                    slug=product.slug,
                    sku=product.sku,
                    image_url=_primary_image_url(product),
                )
                if product
                else None,
            )
        )
    return CartPublic(
        id=cart.id,
        items=items,
        item_count=sum(i.quantity for i in items),
        subtotal=sum((i.line_total for i in items), Decimal("0")),
    )
