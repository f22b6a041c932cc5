"""Price table for marketplace products."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from app.config import Settings, settings
from app.errors import InvalidProduct
from app.models.billing import InvoiceProduct, TargetType

ONE_YEAR_DAYS = 365
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class Quote:
    amount: Decimal
    duration_days: int | None = None


@dataclass(frozen=True)
class PricingTable:
    contacts_access: Decimal
    contacts_access_days: int
    listing: dict[TargetType, Decimal]
    listing_days: int
    promotion_per_day: dict[TargetType, Decimal]
    promotion_year: dict[TargetType, Decimal]
    promotion_default_days: int

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "PricingTable":
        return cls(
            contacts_access=Decimal(s.price_contacts_access),
            contacts_access_days=s.contacts_access_days,
            listing={
                TargetType.player: Decimal(s.price_listing_player),
                TargetType.coach: Decimal(s.price_listing_coach),
            },
            listing_days=s.listing_days,
            promotion_per_day={
                TargetType.player: Decimal(s.price_promotion_player_per_day),
                TargetType.coach: Decimal(s.price_promotion_coach_per_day),
            },
            promotion_year={
                TargetType.player: Decimal(s.price_promotion_player_year),
                TargetType.coach: Decimal(s.price_promotion_coach_year),
            },
            promotion_default_days=s.promotion_default_days,
        )

    def quote(
        self,
        product: InvoiceProduct,
        target_type: TargetType | None = None,
        duration_days: int | None = None,
    ) -> Quote:
        if product is InvoiceProduct.contacts_access:
            return Quote(amount=self.contacts_access)
        target = target_type or TargetType.player
        if product is InvoiceProduct.listing:
            return Quote(amount=self.listing[target])
        if product is InvoiceProduct.promotion:
            days = duration_days or self.promotion_default_days
            if days < 1:
                raise InvalidProduct("duration_days must be at least 1")
            if days >= ONE_YEAR_DAYS:
                return Quote(amount=self.promotion_year[target], duration_days=ONE_YEAR_DAYS)
            amount = (self.promotion_per_day[target] * days).quantize(
                CENTS, rounding=ROUND_HALF_UP
            )
            return Quote(amount=amount, duration_days=days)
        raise InvalidProduct(f"Unknown product: {product}")

    def grant_days(self, product: InvoiceProduct, duration_days: int | None) -> int:
        """How long a paid invoice of ``product`` keeps its entitlement."""
        if product is InvoiceProduct.contacts_access:
            return self.contacts_access_days
        if product is InvoiceProduct.listing:
            return self.listing_days
        return duration_days or self.promotion_default_days
