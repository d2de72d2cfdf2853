import os
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from storefront import crud
from storefront.core.config import settings
from storefront.core.errors import InternalServerError
from storefront.core.storage import get_image_storage, get_optional_image_storage
from storefront.main import app
from storefront.models import MAX_IMAGES_PER_REQUEST, Product, ProductImage
from storefront.tests.utils.factories import data_uri, make_product, png_data_uri
from storefront.tests.utils.storage import FakeImageStorage

ADMIN_PRODUCTS_URL = f"{settings.API_V1_STR}/admin/products"


def images_url(product: Product) -> str:
    return f"{ADMIN_PRODUCTS_URL}/{product.id}/images"


def add_images(session: Session, product: Product, count: int) -> list[ProductImage]:
    images = [
        ProductImage(
            product_id=product.id,
            url=f"https://example.com/{n}.png",
            public_id=f"products/{product.id}/seed-{n}",
            sort_order=n,
            is_primary=n == 0,
        )
        for n in range(count)
    ]
    session.add_all(images)
    session.commit()
    for image in images:
        session.refresh(image)
    return images


@pytest.fixture
def product(session: Session) -> Product:
    return make_product(session, "Trail Shoe")


def test_upload_single_image(
    client: TestClient,
    product: Product,
    storage: FakeImageStorage,
    admin_headers: dict[str, str],
) -> None:
    r = client.post(
        images_url(product),
        headers=admin_headers,
        json={"image": png_data_uri(), "alt_text": "Side view"},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Successfully uploaded 1 image(s)"
    [image] = body["data"]
    assert image["alt_text"] == "Side view"
    assert image["is_primary"] is True
    assert image["sort_order"] == 0
    assert image["url"] == storage.uploaded[0].url
    folder = f"{settings.CLOUDINARY_FOLDER}/{product.id}"
    assert storage.uploaded[0].public_id == f"{folder}/image-1"


def test_upload_batch_appends_after_existing(
    client: TestClient,
    session: Session,
    product: Product,
    admin_headers: dict[str, str],
) -> None:
    add_images(session, product, 2)
    r = client.post(
        images_url(product),
        headers=admin_headers,
        json={
            "images": [
                {"image": png_data_uri()},
                {"image": png_data_uri(), "is_primary": True},
            ]
        },
    )
    assert r.status_code == 201
    data = r.json()["data"]
    assert [i["sort_order"] for i in data] == [2, 3]
    assert [i["is_primary"] for i in data] == [False, True]
    # Missing alt text falls back to the product name
    assert data[0]["alt_text"] == "Trail Shoe"

    r = client.get(images_url(product), headers=admin_headers)
    primaries = [i for i in r.json()["data"] if i["is_primary"]]
    assert len(primaries) == 1
    assert primaries[0]["id"] == data[1]["id"]


def test_upload_keeps_existing_primary(
    client: TestClient,
    session: Session,
    product: Product,
    admin_headers: dict[str, str],
) -> None:
    [existing] = add_images(session, product, 1)
    r = client.post(images_url(product), headers=admin_headers, json={"image": png_data_uri()})
    assert r.json()["data"][0]["is_primary"] is False
    session.refresh(existing)
    assert existing.is_primary is True


def test_upload_sanitizes_alt_text(
    client: TestClient, product: Product, admin_headers: dict[str, str]
) -> None:
    r = client.post(
        images_url(product),
        headers=admin_headers,
        json={
            "image": png_data_uri(),
            "alt_text": "<script>alert(1)</script>Red <b>shoe</b>",
        },
    )
    assert r.json()["data"][0]["alt_text"] == "Red &lt;b&gt;shoe&lt;/b&gt;"


def test_upload_request_shape(
    client: TestClient, product: Product, admin_headers: dict[str, str]
) -> None:
    uri = png_data_uri()
    bad_bodies = [
        {},
        {"image": uri, "images": [{"image": uri}]},
        {"images": [{"image": uri, "is_primary": True}, {"image": uri, "is_primary": True}]},
        {"images": [{"image": uri}] * (MAX_IMAGES_PER_REQUEST + 1)},
    ]
    for body in bad_bodies:
        r = client.post(images_url(product), headers=admin_headers, json=body)
        assert r.status_code == 400
        assert r.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.parametrize(
    ("uri", "message"),
    [
        ("not-a-data-uri", "Invalid base64 format"),
        (
            data_uri(b"GIF89a" + bytes(2048), "image/gif"),
            "Invalid MIME type: image/gif. Allowed: image/jpeg, image/jpg, image/png, image/webp",
        ),
        (data_uri(b"\x89PNG" + bytes(100)), "File too small (minimum 1KB)"),
        (
            data_uri(os.urandom(4096)),
            "Invalid file type. File content does not match declared MIME type.",
        ),
        (png_data_uri(50, 50), "Image too small (minimum 100x100px)"),
    ],
)
def test_upload_rejects_invalid_image(
    client: TestClient,
    product: Product,
    storage: FakeImageStorage,
    admin_headers: dict[str, str],
    uri: str,
    message: str,
) -> None:
    r = client.post(images_url(product), headers=admin_headers, json={"image": uri})
    assert r.status_code == 400
    assert r.json()["error"] == message
    assert r.json()["details"] == [{"field": "image", "message": message}]
    assert storage.uploaded == []


def test_batch_error_names_the_image(
    client: TestClient,
    product: Product,
    storage: FakeImageStorage,
    admin_headers: dict[str, str],
) -> None:
    r = client.post(
        images_url(product),
        headers=admin_headers,
        json={"images": [{"image": png_data_uri()}, {"image": png_data_uri(50, 50)}]},
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Image 2: Image too small (minimum 100x100px)"
    assert r.json()["details"][0]["field"] == "images.1.image"
    assert storage.uploaded == []


def test_upload_respects_image_limit(
    client: TestClient,
    session: Session,
    product: Product,
    admin_headers: dict[str, str],
) -> None:
    add_images(session, product, 19)
    r = client.post(
        images_url(product),
        headers=admin_headers,
        json={"images": [{"image": png_data_uri()}, {"image": png_data_uri()}]},
    )
    assert r.status_code == 422
    assert r.json()["error"] == (
        "Product already has 19 images. Maximum 20 images allowed. You can upload 1 more."
    )


def test_upload_to_deleted_product(
    client: TestClient, session: Session, admin_headers: dict[str, str]
) -> None:
    product = make_product(session)
    crud.soft_delete_product(session=session, db_product=product)
    r = client.post(images_url(product), headers=admin_headers, json={"image": png_data_uri()})
    assert r.status_code == 404


def test_upload_without_storage_configured(
    client: TestClient,
    product: Product,
    admin_headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    app.dependency_overrides.pop(get_image_storage)
    monkeypatch.setattr(settings, "CLOUDINARY_CLOUD_NAME", None)
    r = client.post(images_url(product), headers=admin_headers, json={"image": png_data_uri()})
    assert r.status_code == 503
    assert r.json()["code"] == "SERVICE_UNAVAILABLE"


def test_failed_save_discards_uploads(
    client: TestClient,
    product: Product,
    storage: FakeImageStorage,
    admin_headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fail(**kwargs):
        raise InternalServerError("Failed to save images")

    monkeypatch.setattr(crud, "add_product_images", fail)
    r = client.post(
        images_url(product),
        headers=admin_headers,
        json={"images": [{"image": png_data_uri()}, {"image": png_data_uri()}]},
    )
    assert r.status_code == 500
    assert len(storage.uploaded) == 2
    assert storage.deleted == [s.public_id for s in storage.uploaded]


def test_delete_primary_promotes_next_image(
    client: TestClient,
    session: Session,
    product: Product,
    storage: FakeImageStorage,
    admin_headers: dict[str, str],
) -> None:
    first, second, third = add_images(session, product, 3)
    public_id = first.public_id
    r = client.delete(f"{images_url(product)}/{first.id}", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["message"] == "Image deleted successfully"
    assert r.json()["data"] is None
    assert storage.deleted == [public_id]

    r = client.get(images_url(product), headers=admin_headers)
    data = r.json()["data"]
    assert [i["id"] for i in data] == [str(second.id), str(third.id)]
    assert data[0]["is_primary"] is True


def test_delete_survives_storage_failure(
    client: TestClient,
    session: Session,
    product: Product,
    storage: FakeImageStorage,
    admin_headers: dict[str, str],
) -> None:
    [image] = add_images(session, product, 1)
    image_id = image.id
    storage.fail_delete = True
    r = client.delete(f"{images_url(product)}/{image_id}", headers=admin_headers)
    assert r.status_code == 200
    assert session.get(ProductImage, image_id) is None


def test_delete_without_storage_configured(
    client: TestClient,
    session: Session,
    product: Product,
    admin_headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    app.dependency_overrides.pop(get_optional_image_storage)
    monkeypatch.setattr(settings, "CLOUDINARY_CLOUD_NAME", None)
    [image] = add_images(session, product, 1)
    r = client.delete(f"{images_url(product)}/{image.id}", headers=admin_headers)
    assert r.status_code == 200


def test_delete_image_of_other_product(
    client: TestClient,
    session: Session,
    product: Product,
    admin_headers: dict[str, str],
) -> None:
    other = make_product(session)
    [image] = add_images(session, other, 1)
    r = client.delete(f"{images_url(product)}/{image.id}", headers=admin_headers)
    assert r.status_code == 404
    assert r.json()["error"] == "Image not found"


def test_reorder_images(
    client: TestClient,
    session: Session,
    product: Product,
    admin_headers: dict[str, str],
) -> None:
    first, second = add_images(session, product, 2)
    r = client.put(
        f"{images_url(product)}/reorder",
        headers=admin_headers,
        json={
            "image_orders": [
                {"image_id": str(first.id), "sort_order": 5},
                {"image_id": str(second.id), "sort_order": 1},
            ]
        },
    )
    assert r.status_code == 200
    assert [i["id"] for i in r.json()["data"]] == [str(second.id), str(first.id)]


def test_reorder_rejects_foreign_images(
    client: TestClient,
    session: Session,
    product: Product,
    admin_headers: dict[str, str],
) -> None:
    add_images(session, product, 1)
    r = client.put(
        f"{images_url(product)}/reorder",
        headers=admin_headers,
        json={"image_orders": [{"image_id": str(uuid.uuid4()), "sort_order": 0}]},
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Some images do not belong to this product"


def test_reorder_rejects_duplicates(
    client: TestClient,
    session: Session,
    product: Product,
    admin_headers: dict[str, str],
) -> None:
    first, second = add_images(session, product, 2)
    r = client.put(
        f"{images_url(product)}/reorder",
        headers=admin_headers,
        json={
            "image_orders": [
                {"image_id": str(first.id), "sort_order": 1},
                {"image_id": str(second.id), "sort_order": 1},
            ]
        },
    )
    assert r.status_code == 400
    assert r.json()["details"][0]["message"] == "Duplicate sort orders are not allowed"


def test_set_primary_image(
    client: TestClient,
    session: Session,
    product: Product,
    admin_headers: dict[str, str],
) -> None:
    first, second = add_images(session, product, 2)
    r = client.post(f"{images_url(product)}/{second.id}/primary", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["data"]["is_primary"] is True
    session.refresh(first)
    assert first.is_primary is False


def test_update_image(
    client: TestClient,
    session: Session,
    product: Product,
    admin_headers: dict[str, str],
) -> None:
    first, second = add_images(session, product, 2)
    r = client.patch(
        f"{images_url(product)}/{second.id}",
        headers=admin_headers,
        json={"alt_text": "Top <view>", "is_primary": True},
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["alt_text"] == "Top &lt;view&gt;"
    assert data["is_primary"] is True
    session.refresh(first)
    assert first.is_primary is False

    r = client.patch(f"{images_url(product)}/{second.id}", headers=admin_headers, json={})
    assert r.status_code == 400


def test_images_require_admin(
    client: TestClient, product: Product, customer_headers: dict[str, str]
) -> None:
    r = client.get(images_url(product), headers=customer_headers)
    assert r.status_code == 403
