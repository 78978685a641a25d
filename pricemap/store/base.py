"""Persistence interface for canonical records."""
from typing import Optional, Protocol, Sequence

from pricemap.parse.models import FactorSet, PropertyRecord


class PropertyStore(Protocol):
    """Sink the runner writes to.

    `upsert_batch` is keyed on (source, external_id): an existing row keeps its
    id and created_at, every other field is overwritten. It reports
    (saved, errors) instead of raising for storage failures.
    """

    async def initialize(self) -> None: ...

    async def upsert_batch(self, records: Sequence[PropertyRecord]) -> tuple[int, int]: ...

    async def find_by_id(self, property_id: int) -> Optional[PropertyRecord]: ...

    async def list_active(
        self, lat_min: float, lat_max: float, lng_min: float, lng_max: float
    ) -> list[PropertyRecord]: ...

    async def save_factors(self, factors: FactorSet) -> None: ...

    async def overall_scores(self, property_ids: Sequence[int]) -> dict[int, float]: ...

    async def close(self) -> None: ...
