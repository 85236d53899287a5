"""
Detailing Pricing Engine

Pure functions over an immutable catalog. No persistence, no network I/O.

Pricing Formula:
    unit_price = round(base_price * season_multiplier, 2)
    subtotal = sum(unit_price * quantity)
    discounted_subtotal = subtotal * frequency_multiplier
    tax = discounted_subtotal * tax_rate
    total = discounted_subtotal + tax

    Every reported amount is rounded (half-up, 2 dp) from the unrounded
    intermediate, never from another rounded amount.

Season:
    peak (April-September)  x 1.10
    off-peak                x 0.90

Frequency:
    one-time 1.00, weekly 0.80, bi-weekly 0.85, monthly 0.95

Example:
    Full Detail in July, weekly:
        unit = 80.00 * 1.10 = 88.00
        discounted = 88.00 * 0.80 = 70.40
        tax = 70.40 * 0.08 = 5.632 -> 5.63
        total = 76.032 -> 76.03

The vehicle-type surcharges in the catalog are published in the service menu
but are not part of the price.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from types import MappingProxyType
from typing import Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from .catalog import Catalog
from .core.config import Settings, get_settings
from .domain import CartItem, Frequency, LineItem, VehicleType
from .promos import PromoCodeValidator, PromoValidation

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

FREQUENCY_MULTIPLIERS = MappingProxyType({
    Frequency.ONE_TIME: Decimal("1.00"),
    Frequency.WEEKLY: Decimal("0.80"),
    Frequency.BI_WEEKLY: Decimal("0.85"),
    Frequency.MONTHLY: Decimal("0.95"),
})


def round_money(value: Decimal | float | int) -> Decimal:
    """Round half-up to cents."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_frequency(value: Frequency | str | None) -> Frequency:
    """Unknown or missing frequency is treated as one-time."""
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(value)
    except ValueError:
        logger.warning(f"Unknown frequency {value!r}, pricing as one-time")
        return Frequency.ONE_TIME


@dataclass(frozen=True)
class PricingConfig:
    tax_rate: Decimal = Decimal("0.08")
    peak_multiplier: Decimal = Decimal("1.10")
    off_peak_multiplier: Decimal = Decimal("0.90")
    peak_months: frozenset = frozenset({4, 5, 6, 7, 8, 9})
    frequency_multipliers: Mapping[Frequency, Decimal] = field(default_factory=lambda: FREQUENCY_MULTIPLIERS)
    timezone: str = "America/New_York"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PricingConfig":
        settings = settings or get_settings()
        return cls(
            tax_rate=Decimal(settings.tax_rate),
            peak_multiplier=Decimal(settings.peak_multiplier),
            off_peak_multiplier=Decimal(settings.off_peak_multiplier),
            peak_months=frozenset(settings.peak_months_list),
            timezone=settings.business_timezone,
        )


@dataclass
class PriceBreakdown:
    """Result of a price calculation with full breakdown."""

    frequency: Frequency
    tax_rate: Decimal

    subtotal: Decimal             # sum of unit price * quantity
    discounted_subtotal: Decimal  # after frequency multiplier
    frequency_discount: Decimal   # subtotal - discounted_subtotal
    promo_discount: Decimal       # 0.00 without a valid promo
    tax: Decimal
    total: Decimal

    duration: int = 0  # minutes
    line_items: list[LineItem] = field(default_factory=list)
    promo_code: Optional[str] = None
    promo_message: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "frequency": self.frequency.value,
            "tax_rate": float(self.tax_rate),
            "subtotal": float(self.subtotal),
            "discounted_subtotal": float(self.discounted_subtotal),
            "frequency_discount": float(self.frequency_discount),
            "promo_code": self.promo_code,
            "promo_message": self.promo_message,
            "promo_discount": float(self.promo_discount),
            "tax": float(self.tax),
            "total": float(self.total),
            "duration": self.duration,
            "line_items": [
                {
                    "service_name": item.service_name,
                    "quantity": item.quantity,
                    "unit_price": float(item.price_at_booking),
                    "line_total": float(item.price_at_booking * item.quantity),
                    "duration": item.duration,
                    "category": item.category,
                }
                for item in self.line_items
            ],
            "warnings": list(self.warnings),
        }


class PricingEngine:
    def __init__(
        self,
        catalog: Catalog,
        config: Optional[PricingConfig] = None,
        promos: Optional[PromoCodeValidator] = None,
    ):
        self.catalog = catalog
        self.config = config or PricingConfig()
        self.promos = promos or PromoCodeValidator()

    def today(self) -> date:
        return datetime.now(ZoneInfo(self.config.timezone)).date()

    def is_peak(self, on: date) -> bool:
        return on.month in self.config.peak_months

    def calculate_base_price(self, service_name: str) -> Decimal:
        """Catalog base price; unknown names price at 0.00."""
        item = self.catalog.get_service_details(service_name)
        if item is None:
            logger.warning(f"Service not in catalog, pricing at 0: {service_name}")
            return Decimal("0.00")
        return item.base_price

    def calculate_seasonal_price(self, service_name: str, on: Optional[date] = None) -> Decimal:
        on = on or self.today()
        multiplier = self.config.peak_multiplier if self.is_peak(on) else self.config.off_peak_multiplier
        return round_money(self.calculate_base_price(service_name) * multiplier)

    def calculate_frequency_price(self, subtotal: Decimal | float, frequency: Frequency | str) -> Decimal:
        return round_money(self._apply_frequency(Decimal(str(subtotal)), parse_frequency(frequency)))

    def calculate_total_price(
        self,
        services: Sequence[CartItem],
        addons: Sequence[CartItem] = (),
        frequency: Frequency | str = Frequency.ONE_TIME,
        on: Optional[date] = None,
    ) -> PriceBreakdown:
        on = on or self.today()
        lines, warnings = self._price_cart(list(services) + list(addons), on)
        return self._compose(lines, parse_frequency(frequency), warnings=warnings)

    def price_line_items(
        self,
        line_items: Sequence[LineItem],
        frequency: Frequency | str,
        promo_discount: Decimal = Decimal("0.00"),
    ) -> PriceBreakdown:
        """Recompute a breakdown from stored unit prices, ignoring the live catalog."""
        return self._compose(
            list(line_items),
            parse_frequency(frequency),
            promo_discount=Decimal(str(promo_discount)),
        )

    def quote(
        self,
        services: Sequence[CartItem],
        addons: Sequence[CartItem] = (),
        frequency: Frequency | str = Frequency.ONE_TIME,
        promo_code: Optional[str] = None,
        on: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> PriceBreakdown:
        """
        Price a cart with an optional promo code.

        The promo is validated against the frequency-discounted subtotal and
        subtracted before tax. An invalid code leaves the price untouched and
        is reported in promo_message and warnings.
        """
        breakdown = self.calculate_total_price(services, addons, frequency, on=on)
        if not promo_code:
            return breakdown

        validation = self.validate_promo(promo_code, breakdown.discounted_subtotal, now=now)
        if not validation.valid:
            breakdown.promo_message = validation.message
            breakdown.warnings.append(validation.message)
            return breakdown

        priced = self._compose(
            breakdown.line_items,
            breakdown.frequency,
            promo_discount=validation.discount_amount,
            warnings=breakdown.warnings,
        )
        priced.promo_code = validation.code
        priced.promo_message = validation.message
        return priced

    def validate_promo(
        self,
        code: str,
        subtotal: Decimal | float,
        now: Optional[datetime] = None,
    ) -> PromoValidation:
        return self.promos.validate_promo_code(code, subtotal, now=now)

    def service_menu(
        self,
        vehicle_type: VehicleType | str | None = None,
        on: Optional[date] = None,
    ) -> dict:
        """Public price list: current seasonal price for every active item."""
        on = on or self.today()

        def entry(item) -> dict:
            data = item.to_dict()
            data["seasonal_price"] = float(self.calculate_seasonal_price(item.name, on))
            if vehicle_type is not None:
                data["vehicle_surcharge"] = float(item.get_vehicle_surcharge(vehicle_type))
            return data

        return {
            "season": "peak" if self.is_peak(on) else "off-peak",
            "date": on.isoformat(),
            "services": [entry(item) for item in self.catalog.list_services()],
            "addons": [entry(item) for item in self.catalog.list_addons()],
            "frequency_multipliers": {
                freq.value: float(mult) for freq, mult in self.config.frequency_multipliers.items()
            },
            "tax_rate": float(self.config.tax_rate),
        }

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _apply_frequency(self, subtotal: Decimal, frequency: Frequency) -> Decimal:
        multiplier = self.config.frequency_multipliers.get(frequency, Decimal("1.00"))
        return subtotal * multiplier

    def _price_cart(self, cart: Sequence[CartItem], on: date) -> tuple[list[LineItem], list[str]]:
        lines: list[LineItem] = []
        warnings: list[str] = []
        for entry in cart:
            item = self.catalog.get_service_details(entry.name)
            if item is None:
                logger.warning(f"Skipping unknown cart item: {entry.name}")
                warnings.append(f"Unknown service: {entry.name}")
                continue
            lines.append(
                LineItem(
                    service_name=item.name,
                    quantity=entry.quantity or 1,
                    price_at_booking=self.calculate_seasonal_price(item.name, on),
                    duration=item.duration,
                    category=item.category.value,
                )
            )
        return lines, warnings

    def _compose(
        self,
        lines: list[LineItem],
        frequency: Frequency,
        promo_discount: Decimal = Decimal("0.00"),
        warnings: Optional[list[str]] = None,
    ) -> PriceBreakdown:
        subtotal = sum((line.price_at_booking * line.quantity for line in lines), Decimal("0"))
        discounted = self._apply_frequency(subtotal, frequency)
        taxable = discounted - promo_discount
        tax = taxable * self.config.tax_rate
        return PriceBreakdown(
            frequency=frequency,
            tax_rate=self.config.tax_rate,
            subtotal=round_money(subtotal),
            discounted_subtotal=round_money(discounted),
            frequency_discount=round_money(subtotal - discounted),
            promo_discount=round_money(promo_discount),
            tax=round_money(tax),
            total=round_money(taxable + tax),
            duration=sum(line.duration * line.quantity for line in lines),
            line_items=lines,
            warnings=list(warnings or []),
        )
