"""Currency conversion to the base currency used for tier comparison."""
import logging
from decimal import ROUND_HALF_UP, Decimal

from spendflow.core.config import settings

logger = logging.getLogger(__name__)

AMOUNT_QUANTUM = Decimal("0.01")

# Units of base currency (PKR) per unit of foreign currency.
# Static mid-market rates (replace with live API in production)
RATES: dict[str, Decimal] = {
    "PKR": Decimal("1.0"),
    "USD": Decimal("278.50"),
    "EUR": Decimal("301.20"),
    "GBP": Decimal("354.10"),
    "AED": Decimal("75.80"),
    "SAR": Decimal("74.25"),
    "CNY": Decimal("38.60"),
}


def rate_for(currency: str) -> Decimal:
    """Return the base-currency rate for ``currency``.

    Falls back to 1:1 for unknown currencies (assumes base-equivalent), with a
    warning so the gap in the rate table is visible.
    """
    code = currency.upper()
    if code == settings.BASE_CURRENCY:
        return Decimal("1.0")
    rate = RATES.get(code)
    if rate is None:
        logger.warning("No FX rate for %s; treating as %s 1:1", code, settings.BASE_CURRENCY)
        return Decimal("1.0")
    return rate


def convert_to_base(amount: Decimal, currency: str) -> tuple[Decimal, Decimal]:
    """Convert ``amount`` to the base currency.

    Returns (base_amount, rate_used); base_amount is rounded to the minor unit.
    """
    rate = rate_for(currency)
    return (Decimal(amount) * rate).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP), rate
