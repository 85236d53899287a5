"""
Tests for the service catalog.

Run with: pytest tests/test_catalog.py -v
"""

import dataclasses
from decimal import Decimal

import pytest

from detailing.catalog import Catalog, ServiceOrAddon
from detailing.domain import CartItem, ServiceCategory, VehicleType
from detailing.errors import NotFound, ValidationError


@pytest.fixture
def catalog():
    return Catalog.default()


class TestLookup:
    def test_default_catalog_contents(self, catalog):
        available = catalog.get_available_services()
        assert available["services"] == ["Interior Only", "Exterior Only", "Full Detail"]
        assert len(available["addons"]) == 5
        assert "Headlight Restoration" in available["addons"]

    def test_get_service_details(self, catalog):
        item = catalog.get_service_details("Full Detail")
        assert item.base_price == Decimal("80.00")
        assert item.duration == 240
        assert item.category == ServiceCategory.FULL

    def test_unknown_service_returns_none(self, catalog):
        assert catalog.get_service_details("Ceramic Coating") is None

    def test_require_unknown_raises(self, catalog):
        with pytest.raises(NotFound):
            catalog.require("Ceramic Coating")

    def test_vehicle_surcharge_table(self, catalog):
        item = catalog.get_service_details("Exterior Only")
        assert item.get_vehicle_surcharge(VehicleType.LUXURY) == Decimal("60")
        assert item.get_vehicle_surcharge("sedan") == Decimal("0")

    def test_items_are_immutable(self, catalog):
        item = catalog.get_service_details("Full Detail")
        with pytest.raises(dataclasses.FrozenInstanceError):
            item.base_price = Decimal("1.00")

    def test_inactive_items_not_listed(self):
        catalog = Catalog([
            ServiceOrAddon("Interior Only", Decimal("30.00"), 120, ServiceCategory.INTERIOR),
            ServiceOrAddon("Retired", Decimal("10.00"), 30, ServiceCategory.EXTERIOR, is_active=False),
        ])
        assert [item.name for item in catalog.list_services()] == ["Interior Only"]

    def test_duplicate_names_rejected(self):
        item = ServiceOrAddon("Interior Only", Decimal("30.00"), 120, ServiceCategory.INTERIOR)
        with pytest.raises(ValueError):
            Catalog([item, item])


class TestValidateCart:
    def test_valid_cart(self, catalog):
        catalog.validate_cart(
            [CartItem("Full Detail")],
            [CartItem("Wax & Polish"), CartItem("Engine Bay Cleaning")],
            VehicleType.SUV,
        )

    def test_unknown_service(self, catalog):
        with pytest.raises(ValidationError, match="Unknown service"):
            catalog.validate_cart([CartItem("Ceramic Coating")])

    def test_addon_must_combine_with_a_selected_service(self, catalog):
        with pytest.raises(ValidationError, match="cannot be combined"):
            catalog.validate_cart([CartItem("Interior Only")], [CartItem("Engine Bay Cleaning")])

    def test_addon_without_service(self, catalog):
        with pytest.raises(ValidationError, match="At least one service"):
            catalog.validate_cart([], [CartItem("Wax & Polish")])

    def test_addon_listed_as_service(self, catalog):
        with pytest.raises(ValidationError, match="is an add-on"):
            catalog.validate_cart([CartItem("Wax & Polish")])

    def test_zero_quantity(self, catalog):
        with pytest.raises(ValidationError, match="Quantity"):
            catalog.validate_cart([CartItem("Interior Only", quantity=0)])

    def test_unknown_vehicle_type(self, catalog):
        with pytest.raises(ValidationError, match="vehicle type"):
            catalog.validate_cart([CartItem("Interior Only")], vehicle_type="motorcycle")

    def test_inactive_service(self):
        catalog = Catalog([
            ServiceOrAddon("Interior Only", Decimal("30.00"), 120, ServiceCategory.INTERIOR, is_active=False),
        ])
        with pytest.raises(ValidationError, match="not available"):
            catalog.validate_cart([CartItem("Interior Only")])
