"""
Seating layout and tier prices.

The layout is deterministic: every seat of the hall can be derived from
(table, seat number), so the chart is seeded on read and a record is only
stored once a seat is first written. Tiers are assigned by table; prices are
per tier and only ever copied into a record when it is first created.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterator, Mapping, Optional

from seatlock.core.config import Settings, get_settings
from seatlock.core.errors import ValidationFailed
from seatlock.core.logging import get_logger
from seatlock.schemas.seat import SeatTier

logger = get_logger(__name__)


@dataclass(frozen=True)
class SeatSeed:
    id: str
    table_id: int
    seat_number: int
    tier: SeatTier


def seat_id_for(table_id: int, seat_number: int) -> str:
    return f"t{table_id}-s{seat_number}"


class SeatingLayout:
    """Round tables numbered from 1; the first `gold_tables` are GOLD, the rest SILVER."""

    def __init__(self, total_tables: int = 14, seats_per_table: int = 6, gold_tables: int = 10):
        if total_tables <= 0 or seats_per_table <= 0:
            raise ValueError("Layout needs at least one table and one seat per table")
        self.total_tables = total_tables
        self.seats_per_table = seats_per_table
        self.gold_tables = gold_tables
        self._seeds = {
            seed.id: seed
            for seed in (
                SeatSeed(
                    id=seat_id_for(table, seat),
                    table_id=table,
                    seat_number=seat,
                    tier=self.tier_for(table),
                )
                for table in range(1, total_tables + 1)
                for seat in range(1, seats_per_table + 1)
            )
        }

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SeatingLayout":
        settings = settings or get_settings()
        return cls(
            total_tables=settings.TOTAL_TABLES,
            seats_per_table=settings.SEATS_PER_TABLE,
            gold_tables=settings.GOLD_TABLE_COUNT,
        )

    def tier_for(self, table_id: int) -> SeatTier:
        return SeatTier.GOLD if table_id <= self.gold_tables else SeatTier.SILVER

    def seed(self, seat_id: str) -> Optional[SeatSeed]:
        return self._seeds.get(seat_id)

    @property
    def capacity(self) -> int:
        return len(self._seeds)

    def __iter__(self) -> Iterator[SeatSeed]:
        return iter(self._seeds.values())

    def __contains__(self, seat_id: str) -> bool:
        return seat_id in self._seeds


class PriceBook:
    """
    Current price per tier.

    Held in process memory; a restart goes back to the configured prices.
    Changing a price only affects seats whose record does not exist yet.
    """

    def __init__(self, prices: Mapping[SeatTier, Decimal]):
        missing = set(SeatTier) - set(prices)
        if missing:
            raise ValueError(f"Missing price for tier(s): {', '.join(sorted(t.value for t in missing))}")
        self._prices = {SeatTier(tier): Decimal(price) for tier, price in prices.items()}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PriceBook":
        settings = settings or get_settings()
        return cls({
            SeatTier.PLATINUM: settings.PRICE_PLATINUM,
            SeatTier.GOLD: settings.PRICE_GOLD,
            SeatTier.SILVER: settings.PRICE_SILVER,
        })

    def price_for(self, tier: SeatTier) -> Decimal:
        return self._prices[SeatTier(tier)]

    def update(self, changes: Mapping[SeatTier, Decimal]) -> dict[SeatTier, Decimal]:
        errors = [
            {"field": SeatTier(tier).value, "message": "price must be non-negative"}
            for tier, price in changes.items()
            if Decimal(price) < 0
        ]
        if errors:
            raise ValidationFailed("Invalid tier prices", errors)

        for tier, price in changes.items():
            self._prices[SeatTier(tier)] = Decimal(price).quantize(Decimal("0.01"))
        logger.info("tier_prices_updated", prices={t.value: str(p) for t, p in self._prices.items()})
        return self.as_dict()

    def as_dict(self) -> dict[SeatTier, Decimal]:
        return dict(self._prices)
