"""
Service Catalog

Immutable table of detailing services and add-ons.

Main services (interior, exterior, full) can be booked alone. Add-ons must be
booked alongside at least one main service listed in their can_combine_with.

The catalog is a value: build it once (Catalog.default() or from rows) and
inject it into the pricing engine. A new price list means a new Catalog.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence

from .domain import CartItem, ServiceCategory, VehicleType
from .errors import NotFound, ValidationError


@dataclass(frozen=True)
class ServiceOrAddon:
    name: str
    base_price: Decimal
    duration: int  # minutes
    category: ServiceCategory
    description: str = ""
    vehicle_type_pricing: Mapping[str, Decimal] = field(default_factory=dict)
    can_combine_with: frozenset = frozenset()
    is_active: bool = True

    @property
    def is_addon(self) -> bool:
        return self.category == ServiceCategory.ADDON

    def get_vehicle_surcharge(self, vehicle_type: VehicleType | str) -> Decimal:
        key = vehicle_type.value if isinstance(vehicle_type, VehicleType) else vehicle_type
        return self.vehicle_type_pricing.get(key, Decimal("0.00"))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "base_price": float(self.base_price),
            "duration": self.duration,
            "category": self.category.value,
            "description": self.description,
            "vehicle_type_pricing": {k: float(v) for k, v in self.vehicle_type_pricing.items()},
            "can_combine_with": sorted(self.can_combine_with),
            "is_active": self.is_active,
        }


def _surcharges(sedan: str, suv: str, truck: str, luxury: str, other: str) -> Mapping[str, Decimal]:
    return MappingProxyType({
        VehicleType.SEDAN.value: Decimal(sedan),
        VehicleType.SUV.value: Decimal(suv),
        VehicleType.TRUCK.value: Decimal(truck),
        VehicleType.LUXURY.value: Decimal(luxury),
        VehicleType.OTHER.value: Decimal(other),
    })


INTERIOR_ONLY = "Interior Only"
EXTERIOR_ONLY = "Exterior Only"
FULL_DETAIL = "Full Detail"

DEFAULT_ITEMS = (
    ServiceOrAddon(
        name=INTERIOR_ONLY,
        base_price=Decimal("30.00"),
        duration=120,
        category=ServiceCategory.INTERIOR,
        description="Vacuum, wipe-down and conditioning of the full cabin",
        vehicle_type_pricing=_surcharges("0", "25", "35", "50", "15"),
    ),
    ServiceOrAddon(
        name=EXTERIOR_ONLY,
        base_price=Decimal("20.00"),
        duration=90,
        category=ServiceCategory.EXTERIOR,
        description="Hand wash, wheels, tires and windows",
        vehicle_type_pricing=_surcharges("0", "30", "40", "60", "20"),
    ),
    ServiceOrAddon(
        name=FULL_DETAIL,
        base_price=Decimal("80.00"),
        duration=240,
        category=ServiceCategory.FULL,
        description="Interior and exterior detail",
        vehicle_type_pricing=_surcharges("0", "50", "70", "100", "30"),
    ),
    ServiceOrAddon(
        name="Wax & Polish",
        base_price=Decimal("25.00"),
        duration=45,
        category=ServiceCategory.ADDON,
        description="Paint polish and protective wax coat",
        can_combine_with=frozenset({INTERIOR_ONLY, EXTERIOR_ONLY, FULL_DETAIL}),
    ),
    ServiceOrAddon(
        name="Engine Bay Cleaning",
        base_price=Decimal("35.00"),
        duration=30,
        category=ServiceCategory.ADDON,
        description="Degrease and dress the engine bay",
        can_combine_with=frozenset({EXTERIOR_ONLY, FULL_DETAIL}),
    ),
    ServiceOrAddon(
        name="Pet Hair Removal",
        base_price=Decimal("20.00"),
        duration=20,
        category=ServiceCategory.ADDON,
        can_combine_with=frozenset({INTERIOR_ONLY, FULL_DETAIL}),
    ),
    ServiceOrAddon(
        name="Odor Elimination",
        base_price=Decimal("30.00"),
        duration=15,
        category=ServiceCategory.ADDON,
        can_combine_with=frozenset({INTERIOR_ONLY, FULL_DETAIL}),
    ),
    ServiceOrAddon(
        name="Headlight Restoration",
        base_price=Decimal("40.00"),
        duration=60,
        category=ServiceCategory.ADDON,
        description="Sand, polish and seal oxidized headlight lenses",
        can_combine_with=frozenset({EXTERIOR_ONLY, FULL_DETAIL}),
    ),
)


class Catalog:
    """Read-only lookup of services and add-ons by name."""

    def __init__(self, items: Iterable[ServiceOrAddon]):
        by_name: dict[str, ServiceOrAddon] = {}
        for item in items:
            if item.name in by_name:
                raise ValueError(f"Duplicate catalog item: {item.name}")
            by_name[item.name] = item
        self._items = MappingProxyType(by_name)

    @classmethod
    def default(cls) -> "Catalog":
        return cls(DEFAULT_ITEMS)

    def __contains__(self, name: str) -> bool:
        return name in self._items

    def __iter__(self):
        return iter(self._items.values())

    def get_service_details(self, name: str) -> Optional[ServiceOrAddon]:
        return self._items.get(name)

    def require(self, name: str) -> ServiceOrAddon:
        item = self._items.get(name)
        if item is None:
            raise NotFound(f"Service not found: {name}", {"service_name": name})
        return item

    def list_active(self) -> list[ServiceOrAddon]:
        return [item for item in self._items.values() if item.is_active]

    def list_services(self) -> list[ServiceOrAddon]:
        return [item for item in self.list_active() if not item.is_addon]

    def list_addons(self) -> list[ServiceOrAddon]:
        return [item for item in self.list_active() if item.is_addon]

    def get_available_services(self) -> dict:
        return {
            "services": [item.name for item in self.list_services()],
            "addons": [item.name for item in self.list_addons()],
        }

    def validate_cart(
        self,
        services: Sequence[CartItem],
        addons: Sequence[CartItem] = (),
        vehicle_type: VehicleType | str = VehicleType.SEDAN,
    ) -> None:
        """
        Check a cart before it is priced and booked.

        Raises ValidationError on the first problem found.
        """
        try:
            VehicleType(vehicle_type)
        except ValueError:
            raise ValidationError(
                f"Unknown vehicle type: {vehicle_type}",
                {"vehicle_type": str(vehicle_type)},
            )

        if not services:
            raise ValidationError("At least one service is required")

        selected: set[str] = set()
        for entry in services:
            item = self._check_entry(entry)
            if item.is_addon:
                raise ValidationError(
                    f"{item.name} is an add-on, not a service",
                    {"service_name": item.name},
                )
            selected.add(item.name)

        for entry in addons:
            item = self._check_entry(entry)
            if not item.is_addon:
                raise ValidationError(
                    f"{item.name} is a service, not an add-on",
                    {"service_name": item.name},
                )
            if not item.can_combine_with & selected:
                raise ValidationError(
                    f"{item.name} cannot be combined with {', '.join(sorted(selected))}",
                    {"addon": item.name, "services": sorted(selected)},
                )

    def _check_entry(self, entry: CartItem) -> ServiceOrAddon:
        if entry.quantity < 1:
            raise ValidationError(
                f"Quantity must be at least 1 for {entry.name}",
                {"service_name": entry.name, "quantity": entry.quantity},
            )
        item = self._items.get(entry.name)
        if item is None:
            raise ValidationError(f"Unknown service: {entry.name}", {"service_name": entry.name})
        if not item.is_active:
            raise ValidationError(f"Service is not available: {entry.name}", {"service_name": entry.name})
        return item
