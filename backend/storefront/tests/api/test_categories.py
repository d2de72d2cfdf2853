from fastapi.testclient import TestClient
from sqlmodel import Session

from storefront import crud
from storefront.core.config import settings
from storefront.models import ProductStatus
from storefront.tests.utils.factories import make_category, make_product

CATEGORIES_URL = f"{settings.API_V1_STR}/categories"


def test_flat_list_only_with_products(client: TestClient, session: Session) -> None:
    shoes = make_category(session, "Shoes")
    make_category(session, "Hats")
    bags = make_category(session, "Bags")
    make_product(session, category=shoes)
    make_product(session, category=shoes)
    make_product(session, category=bags, status=ProductStatus.DRAFT)

    r = client.get(CATEGORIES_URL)
    assert r.status_code == 200
    assert r.headers["Cache-Control"] == "public, s-maxage=300, stale-while-revalidate=600"
    body = r.json()
    assert [(c["slug"], c["product_count"]) for c in body["data"]] == [("shoes", 2)]
    assert body["meta"]["total"] == 1

    r = client.get(CATEGORIES_URL, params={"only_with_products": "false"})
    assert [c["slug"] for c in r.json()["data"]] == ["bags", "hats", "shoes"]


def test_ordering_by_sort_order_then_name(client: TestClient, session: Session) -> None:
    make_category(session, "Zebra", sort_order=0)
    make_category(session, "Apple", sort_order=5)
    make_category(session, "Mango", sort_order=0)
    r = client.get(CATEGORIES_URL, params={"only_with_products": "false"})
    assert [c["name"] for c in r.json()["data"]] == ["Mango", "Zebra", "Apple"]


def test_tree_keeps_parents_of_populated_children(
    client: TestClient, session: Session
) -> None:
    clothing = make_category(session, "Clothing")
    shoes = make_category(session, "Shoes", parent=clothing)
    make_category(session, "Scarves", parent=clothing)
    make_category(session, "Garden")
    make_product(session, category=shoes)

    r = client.get(CATEGORIES_URL, params={"include_children": "true"})
    tree = r.json()["data"]
    assert [c["slug"] for c in tree] == ["clothing"]
    assert tree[0]["product_count"] == 0
    assert [c["slug"] for c in tree[0]["children"]] == ["shoes"]

    r = client.get(
        CATEGORIES_URL, params={"include_children": "true", "only_with_products": "false"}
    )
    tree = r.json()["data"]
    assert [c["slug"] for c in tree] == ["clothing", "garden"]
    assert [c["slug"] for c in tree[0]["children"]] == ["scarves", "shoes"]


def test_category_detail(client: TestClient, session: Session) -> None:
    clothing = make_category(session, "Clothing")
    shoes = make_category(session, "Shoes", parent=clothing)
    boots = make_category(session, "Boots", parent=shoes)
    plain = make_product(session, "Plain Sneaker", category=shoes)
    star = make_product(session, "Star Sneaker", category=shoes, featured=True)
    make_product(session, "Hidden Draft", category=shoes, status=ProductStatus.DRAFT)
    gone = make_product(session, "Gone Sneaker", category=shoes)
    crud.soft_delete_product(session=session, db_product=gone)

    r = client.get(f"{CATEGORIES_URL}/shoes")
    assert r.status_code == 200
    body = r.json()
    category = body["data"]["category"]
    assert category["product_count"] == 2
    assert category["parent"]["slug"] == "clothing"
    assert [c["slug"] for c in category["children"]] == ["boots"]
    assert category["children"][0]["id"] == str(boots.id)
    assert [p["slug"] for p in category["path"]] == ["clothing", "shoes"]
    assert [p["id"] for p in body["data"]["products"]] == [str(star.id), str(plain.id)]
    assert body["pagination"]["total_items"] == 2


def test_category_detail_sorting(client: TestClient, session: Session) -> None:
    shoes = make_category(session, "Shoes")
    make_product(session, "Beta", category=shoes, price="30.00")
    make_product(session, "Alpha", category=shoes, price="40.00")
    r = client.get(
        f"{CATEGORIES_URL}/shoes", params={"sort_by": "name", "sort_order": "asc"}
    )
    assert [p["name"] for p in r.json()["data"]["products"]] == ["Alpha", "Beta"]
    r = client.get(f"{CATEGORIES_URL}/shoes", params={"sort_by": "price", "limit": 1})
    assert [p["name"] for p in r.json()["data"]["products"]] == ["Alpha"]
    assert r.json()["pagination"]["total_pages"] == 2


def test_category_detail_not_found(client: TestClient) -> None:
    r = client.get(f"{CATEGORIES_URL}/missing")
    assert r.status_code == 404
    assert r.json()["error"] == "Category not found"


def test_category_detail_invalid_slug(client: TestClient) -> None:
    r = client.get(f"{CATEGORIES_URL}/Not_Valid")
    assert r.status_code == 400
