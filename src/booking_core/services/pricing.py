"""Pricing service: authoritative price breakdown for a stay.

Prices are always computed here from the listing record; amounts supplied by
clients are never trusted. All arithmetic is in integer minor units with
Decimal rates rounded half-up.
"""

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal

from booking_core.config import get_settings
from booking_core.models import FeeSplit, Listing, PriceBreakdown, ValidationError

# Processor minimum charge per currency, in minor units
MINIMUM_CHARGE: dict[str, int] = {
    "USD": 50,
    "CAD": 50,
    "EUR": 50,
    "GBP": 30,
    "ETB": 5000,
}

MAXIMUM_CHARGE = 99_999_999

SUPPORTED_CURRENCIES = frozenset(MINIMUM_CHARGE)


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PricingService:
    """Service for price and fee calculations."""

    def __init__(
        self,
        platform_fee_rate: Decimal | None = None,
        tax_rate: Decimal | None = None,
    ) -> None:
        """Initialize pricing service.

        Args:
            platform_fee_rate: Share of the accommodation charged as service fee
                and kept by the platform. Defaults to settings.
            tax_rate: Tax applied to accommodation, cleaning and service fee.
                Defaults to settings.
        """
        settings = get_settings()
        self.platform_fee_rate = (
            platform_fee_rate if platform_fee_rate is not None else settings.platform_fee_rate
        )
        self.tax_rate = tax_rate if tax_rate is not None else settings.tax_rate

    def quote(self, listing: Listing, check_in: dt.date, check_out: dt.date) -> PriceBreakdown:
        """Calculate the price of a stay on a listing.

        Args:
            listing: Authoritative listing record
            check_in: Check-in date
            check_out: Check-out date

        Returns:
            PriceBreakdown in the listing's currency

        Raises:
            ValidationError: Unsupported currency, minimum stay not met, or a
                total outside the processor's charge limits
        """
        nights = (check_out - check_in).days
        if nights < 1:
            raise ValidationError("check_out must be after check_in")
        if nights < listing.min_nights:
            raise ValidationError(
                f"Minimum stay is {listing.min_nights} nights. You selected {nights} nights.",
                {"min_nights": str(listing.min_nights), "nights": str(nights)},
            )

        currency = listing.currency.upper()
        self.validate_currency(currency)

        accommodation = listing.nightly_rate * nights
        platform_fee = round_half_up(Decimal(accommodation) * self.platform_fee_rate)
        taxable = accommodation + listing.cleaning_fee + platform_fee
        tax = round_half_up(Decimal(taxable) * self.tax_rate)
        total = taxable + tax

        self.validate_amount(total, currency)

        return PriceBreakdown(
            currency=currency,
            nightly_rate=listing.nightly_rate,
            nights=nights,
            accommodation=accommodation,
            cleaning_fee=listing.cleaning_fee,
            platform_fee=platform_fee,
            tax=tax,
            total=total,
        )

    def compute_fee_split(self, total: int) -> FeeSplit:
        """Split a charged total into platform fee and host share."""
        fee = round_half_up(Decimal(total) * self.platform_fee_rate)
        return FeeSplit(total=total, application_fee_amount=fee, host_amount=total - fee)

    @staticmethod
    def validate_currency(currency: str) -> None:
        if currency.upper() not in SUPPORTED_CURRENCIES:
            raise ValidationError(
                f"Currency {currency} is not supported",
                {"currency": currency, "supported": ",".join(sorted(SUPPORTED_CURRENCIES))},
            )

    @staticmethod
    def validate_amount(amount: int, currency: str) -> None:
        """Check an amount against the processor's charge limits."""
        minimum = MINIMUM_CHARGE[currency.upper()]
        if amount < minimum:
            raise ValidationError(
                f"Amount is below the minimum charge of {minimum} for {currency}",
                {"amount": str(amount), "minimum": str(minimum)},
            )
        if amount > MAXIMUM_CHARGE:
            raise ValidationError(
                "Amount exceeds the maximum charge",
                {"amount": str(amount), "maximum": str(MAXIMUM_CHARGE)},
            )
