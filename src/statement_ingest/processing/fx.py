"""Optional foreign-exchange rate lookup."""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol

from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)


class FxRateProvider(Protocol):
    """Source of exchange rates. Implementations may raise on lookup failure."""

    def rate(self, from_ccy: str, to_ccy: str, on: date) -> Optional[Decimal]:
        ...


class StaticFxRates:
    """Fixed rate table, independent of date.

    Rates are stored as (from, to) -> rate. The inverse direction is
    derived when only one direction is configured.
    """

    def __init__(self, rates: Optional[dict[tuple[str, str], Decimal]] = None):
        self._rates: dict[tuple[str, str], Decimal] = {}
        for (src, dst), value in (rates or {}).items():
            self.set_rate(src, dst, Decimal(str(value)))

    def set_rate(self, from_ccy: str, to_ccy: str, rate: Decimal) -> None:
        if rate <= 0:
            raise ValueError(f"FX rate must be positive: {from_ccy}->{to_ccy} = {rate}")
        self._rates[(from_ccy.upper(), to_ccy.upper())] = rate

    def rate(self, from_ccy: str, to_ccy: str, on: date) -> Optional[Decimal]:
        src, dst = from_ccy.upper(), to_ccy.upper()
        if src == dst:
            return Decimal(1)
        if (src, dst) in self._rates:
            return self._rates[(src, dst)]
        if (dst, src) in self._rates:
            return Decimal(1) / self._rates[(dst, src)]
        return None


def convert_amount(
    amount: Decimal,
    from_ccy: str,
    to_ccy: str,
    on: date,
    provider: Optional[FxRateProvider] = None,
    decimal_places: int = 2,
) -> Optional[Decimal]:
    """Convert an amount, or return None when no rate is available.

    Lookup failures are logged and reported as None, never raised.
    """
    if from_ccy.upper() == to_ccy.upper():
        return amount
    if provider is None:
        return None
    try:
        rate = provider.rate(from_ccy, to_ccy, on)
    except Exception as e:
        logger.warning(f"FX lookup {from_ccy}->{to_ccy} on {on} failed: {e}")
        return None
    if rate is None:
        logger.debug(f"No FX rate {from_ccy}->{to_ccy} on {on}")
        return None
    quantum = Decimal(1).scaleb(-decimal_places)
    return (amount * rate).quantize(quantum, rounding=ROUND_HALF_UP)
