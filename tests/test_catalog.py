from decimal import Decimal

import pytest

from common.exceptions import ValidationError, InsufficientStockError, NotFoundError
from modules.catalog.service import catalog_service


def new_product(db, **data):
    payload = {"name": "Urea 45kg", "category": "Fertilizers", "price": "266.50", "stock": 40, "unit": "bag"}
    payload.update(data)
    product = catalog_service.create_product(db, payload)
    db.commit()
    return product


def test_create_derives_unique_slug(db):
    first = new_product(db)
    second = new_product(db)
    assert first.slug == "urea-45kg"
    assert second.slug == "urea-45kg-2"


@pytest.mark.parametrize("overrides", [
    {"name": "  "},
    {"category": "Toys"},
    {"unit": "crate"},
    {"price": "-1"},
    {"price": "abc"},
    {"discount_price": "300"},
    {"stock": -3},
])
def test_create_rejects_invalid_products(db, overrides):
    with pytest.raises(ValidationError):
        new_product(db, **overrides)


def test_derived_properties(make_product):
    product = make_product(price=Decimal("1000"), discount_price=Decimal("850"), stock=4)
    assert product.effective_price == Decimal("850")
    assert product.discount_percentage == 15
    assert product.stock_status == "low-stock"


def test_list_products_filters_and_sorts(db, make_product):
    make_product(name="Paddy Seed", category="Seeds", price=Decimal("500"), suitable_crops=["rice"])
    make_product(name="Wheat Seed", category="Seeds", price=Decimal("300"), suitable_crops=["wheat"])
    make_product(name="Sprayer", category="Tools", price=Decimal("1200"), stock=0, suitable_crops=[])

    seeds, total = catalog_service.list_products(db, category="Seeds", sort_by="price", sort_order="asc")
    assert total == 2
    assert [p.name for p in seeds] == ["Wheat Seed", "Paddy Seed"]

    rice, _ = catalog_service.list_products(db, crop="rice")
    assert [p.name for p in rice] == ["Paddy Seed"]

    stocked, total = catalog_service.list_products(db, in_stock=True)
    assert total == 2


def test_decrement_stock_never_oversells(db, make_product):
    product = make_product(stock=3)
    catalog_service.decrement_stock(db, product.id, 2)
    with pytest.raises(InsufficientStockError):
        catalog_service.decrement_stock(db, product.id, 2)
    db.commit()
    db.refresh(product)
    assert product.stock == 1

    catalog_service.restore_stock(db, product.id, 2)
    db.commit()
    db.refresh(product)
    assert product.stock == 3


def test_deactivated_products_are_hidden(db, make_product):
    product = make_product()
    catalog_service.deactivate_product(db, product.id)
    db.commit()
    with pytest.raises(NotFoundError):
        catalog_service.get_product(db, product.id)
    assert catalog_service.get_product(db, product.id, active_only=False).is_active is False


def test_crop_suitability_is_case_insensitive_substring(make_product):
    product = make_product(suitable_crops=["Basmati Rice", "Wheat"])
    assert product.is_suitable_for_crop("rice")
    assert not product.is_suitable_for_crop("cotton")
