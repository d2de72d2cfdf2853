import uuid

from fastapi.testclient import TestClient
from sqlmodel import Session

from storefront import crud
from storefront.core.config import settings
from storefront.models import Category, Product, ProductStatus
from storefront.tests.utils.factories import make_category, make_product

ADMIN_CATEGORIES_URL = f"{settings.API_V1_STR}/admin/categories"


def test_create_category(client: TestClient, admin_headers: dict[str, str]) -> None:
    r = client.post(
        ADMIN_CATEGORIES_URL,
        headers=admin_headers,
        json={"name": "  Home & Garden ", "description": "Outdoor living"},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Category created successfully"
    assert body["data"]["name"] == "Home & Garden"
    assert body["data"]["slug"] == "home-garden"
    assert body["data"]["parent_id"] is None


def test_create_with_explicit_slug(client: TestClient, admin_headers: dict[str, str]) -> None:
    r = client.post(
        ADMIN_CATEGORIES_URL, headers=admin_headers, json={"name": "Kitchen", "slug": "cook"}
    )
    assert r.json()["data"]["slug"] == "cook"

    r = client.post(
        ADMIN_CATEGORIES_URL, headers=admin_headers, json={"name": "Kitchen", "slug": "Cook Ware"}
    )
    assert r.status_code == 400
    assert r.json()["details"][0]["field"] == "slug"


def test_create_with_full_length_slug(client: TestClient, admin_headers: dict[str, str]) -> None:
    slug = "a" * 100
    r = client.post(
        ADMIN_CATEGORIES_URL, headers=admin_headers, json={"name": "Long", "slug": slug}
    )
    assert r.status_code == 201
    assert r.json()["data"]["slug"] == slug


def test_create_with_taken_slug_gets_suffix(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    make_category(session, "Toys")
    r = client.post(ADMIN_CATEGORIES_URL, headers=admin_headers, json={"name": "Toys"})
    slug = r.json()["data"]["slug"]
    assert slug != "toys"
    assert slug.startswith("toys-")


def test_create_child_category(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    parent = make_category(session, "Sports")
    r = client.post(
        ADMIN_CATEGORIES_URL,
        headers=admin_headers,
        json={"name": "Tennis", "parent_id": str(parent.id)},
    )
    assert r.json()["data"]["parent_id"] == str(parent.id)

    r = client.post(
        ADMIN_CATEGORIES_URL,
        headers=admin_headers,
        json={"name": "Golf", "parent_id": str(uuid.uuid4())},
    )
    assert r.status_code == 400
    assert r.json()["details"] == [
        {"field": "parent_id", "message": "Parent category not found"}
    ]


def test_create_requires_admin(client: TestClient, customer_headers: dict[str, str]) -> None:
    r = client.post(ADMIN_CATEGORIES_URL, headers=customer_headers, json={"name": "Nope"})
    assert r.status_code == 403


def test_list_with_counts(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    books = make_category(session, "Books", sort_order=1)
    make_category(session, "Fiction", parent=books)
    make_product(session, category=books)
    make_product(session, category=books, status=ProductStatus.DRAFT)

    r = client.get(ADMIN_CATEGORIES_URL, headers=admin_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["pagination"]["total_items"] == 2
    by_slug = {c["slug"]: c for c in body["data"]}
    # Admin counts include non-active products
    assert by_slug["books"]["product_count"] == 2
    assert by_slug["books"]["children_count"] == 1
    assert by_slug["fiction"]["children_count"] == 0


def test_list_root_categories(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    books = make_category(session, "Books")
    make_category(session, "Fiction", parent=books)
    r = client.get(ADMIN_CATEGORIES_URL, headers=admin_headers, params={"parent_id": "root"})
    assert [c["slug"] for c in r.json()["data"]] == ["books"]

    r = client.get(
        ADMIN_CATEGORIES_URL, headers=admin_headers, params={"parent_id": str(books.id)}
    )
    assert [c["slug"] for c in r.json()["data"]] == ["fiction"]

    r = client.get(ADMIN_CATEGORIES_URL, headers=admin_headers, params={"parent_id": "nope"})
    assert r.status_code == 400
    assert r.json()["details"][0]["message"] == "Invalid parent ID format"


def test_list_as_tree(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    books = make_category(session, "Books", sort_order=2)
    make_category(session, "Music", sort_order=1)
    make_category(session, "Poetry", parent=books)
    make_category(session, "Fiction", parent=books)

    r = client.get(
        ADMIN_CATEGORIES_URL, headers=admin_headers, params={"include_children": True}
    )
    data = r.json()["data"]
    assert [c["slug"] for c in data] == ["music", "books"]
    assert [c["slug"] for c in data[1]["children"]] == ["fiction", "poetry"]
    assert r.json()["filters"] == {"include_children": True}


def test_tree_of_children_under_a_parent(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    books = make_category(session, "Books")
    fiction = make_category(session, "Fiction", parent=books)
    make_category(session, "Poetry", parent=books)
    make_category(session, "Crime", parent=fiction)

    r = client.get(
        ADMIN_CATEGORIES_URL,
        headers=admin_headers,
        params={"include_children": True, "parent_id": str(books.id)},
    )
    body = r.json()
    assert body["pagination"]["total_items"] == 2
    assert [c["slug"] for c in body["data"]] == ["fiction", "poetry"]


def test_tree_of_search_matches(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    books = make_category(session, "Books")
    make_category(session, "Poetry", parent=books)
    make_category(session, "Music")

    r = client.get(
        ADMIN_CATEGORIES_URL,
        headers=admin_headers,
        params={"include_children": True, "search": "poetry"},
    )
    body = r.json()
    assert body["pagination"]["total_items"] == 1
    assert [c["slug"] for c in body["data"]] == ["poetry"]
    assert body["data"][0]["parent_id"] == str(books.id)


def test_list_search(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    make_category(session, "Garden Tools")
    make_category(session, "Kitchen")
    r = client.get(ADMIN_CATEGORIES_URL, headers=admin_headers, params={"search": "garden"})
    assert [c["name"] for c in r.json()["data"]] == ["Garden Tools"]


def test_read_category_detail(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    books = make_category(session, "Books")
    fiction = make_category(session, "Fiction", parent=books)
    make_product(session, "Draft Novel", category=fiction, status=ProductStatus.DRAFT)

    r = client.get(f"{ADMIN_CATEGORIES_URL}/{fiction.id}", headers=admin_headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["parent"]["slug"] == "books"
    assert [c["slug"] for c in data["path"]] == ["books", "fiction"]
    assert data["product_count"] == 1
    assert [p["name"] for p in data["products"]] == ["Draft Novel"]
    assert data["products"][0]["status"] == "DRAFT"

    r = client.get(f"{ADMIN_CATEGORIES_URL}/{uuid.uuid4()}", headers=admin_headers)
    assert r.status_code == 404
    assert r.json()["error"] == "Category not found"


def test_update_category(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    category = make_category(session, "Books")
    parent = make_category(session, "Media")
    r = client.put(
        f"{ADMIN_CATEGORIES_URL}/{category.id}",
        headers=admin_headers,
        json={"name": "Printed Books", "parent_id": str(parent.id), "sort_order": 4},
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["name"] == "Printed Books"
    # Slug stays stable on rename
    assert data["slug"] == "books"
    assert data["parent_id"] == str(parent.id)
    assert data["sort_order"] == 4


def test_update_can_detach_from_parent(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    parent = make_category(session, "Media")
    child = make_category(session, "Books", parent=parent)
    r = client.put(
        f"{ADMIN_CATEGORIES_URL}/{child.id}", headers=admin_headers, json={"parent_id": None}
    )
    assert r.status_code == 200
    assert r.json()["data"]["parent_id"] is None


def test_update_rejects_cycles(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    root = make_category(session, "Root")
    child = make_category(session, "Child", parent=root)
    grandchild = make_category(session, "Grandchild", parent=child)

    for parent_id in (grandchild.id, root.id):
        r = client.put(
            f"{ADMIN_CATEGORIES_URL}/{root.id}",
            headers=admin_headers,
            json={"parent_id": str(parent_id)},
        )
        assert r.status_code == 400
        assert r.json()["error"] == "Cannot set parent: would create circular reference"


def test_update_validation(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    category = make_category(session, "Books")
    url = f"{ADMIN_CATEGORIES_URL}/{category.id}"

    r = client.put(url, headers=admin_headers, json={})
    assert r.status_code == 400
    assert r.json()["error"] == "No fields to update"

    r = client.put(url, headers=admin_headers, json={"parent_id": str(uuid.uuid4())})
    assert r.status_code == 400
    assert r.json()["error"] == "Parent category not found"

    r = client.put(url, headers=admin_headers, json={"name": None})
    assert r.status_code == 400


def test_delete_category_with_products(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    category = make_category(session, "Books")
    make_product(session, category=category)
    make_product(session, category=category, status=ProductStatus.DRAFT)
    r = client.delete(f"{ADMIN_CATEGORIES_URL}/{category.id}", headers=admin_headers)
    assert r.status_code == 409
    assert r.json()["error"] == (
        "Cannot delete category with 2 active products. "
        "Please reassign or delete products first."
    )


def test_delete_moves_children_to_parent(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    root = make_category(session, "Media")
    middle = make_category(session, "Books", parent=root)
    leaf = make_category(session, "Fiction", parent=middle)
    middle_id = middle.id
    archived = make_product(session, category=middle)
    crud.soft_delete_product(session=session, db_product=archived)

    r = client.delete(f"{ADMIN_CATEGORIES_URL}/{middle_id}", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["message"] == "Category deleted successfully"

    assert session.get(Category, middle_id) is None
    session.refresh(leaf)
    assert leaf.parent_id == root.id
    refreshed = session.get(Product, archived.id)
    assert refreshed is not None
    assert refreshed.category_id is None
