"""Supabase property store with batch upsert and retries."""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional, Sequence

from supabase import Client, create_client
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from pricemap.config import config
from pricemap.parse.models import FactorSet, PropertyRecord

logger = logging.getLogger(__name__)


class SupabasePropertyStore:
    """Writes records to Supabase (runs the sync client in a thread pool)."""

    def __init__(self, client: Optional[Client] = None, table: Optional[str] = None):
        if client is None:
            if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE:
                raise ValueError("Supabase configuration missing")
            client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE)
        self.client: Client = client
        self.table = table or config.SUPABASE_TABLE
        self.factors_table = f"{self.table}_factors"

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def initialize(self) -> None:
        """Tables are managed in Supabase; only check the connection."""
        if not await self.test_connection():
            logger.warning("Supabase not reachable, batches will be spooled")

    async def close(self) -> None:
        """The sync client holds no connection to release."""

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((Exception,)),
    )
    def _existing_sync(self, keys: list[tuple[str, str]]) -> dict[tuple[str, str], tuple[int, str]]:
        """(source, external_id) -> (id, created_at) for stored keys."""
        by_source = defaultdict(list)
        for source, external_id in keys:
            by_source[source].append(external_id)

        existing = {}
        for source, external_ids in by_source.items():
            response = (
                self.client.table(self.table)
                .select("id, created_at, source, external_id")
                .eq("source", source)
                .in_("external_id", external_ids)
                .execute()
            )
            for row in response.data or []:
                existing[(row["source"], row["external_id"])] = (row["id"], row["created_at"])
        return existing

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((Exception,)),
    )
    def _upsert_sync(self, data: list[dict]) -> list[dict]:
        """Synchronous upsert (called from thread pool)."""
        response = (
            self.client.table(self.table)
            .upsert(data, on_conflict="source,external_id")
            .execute()
        )
        return response.data or []

    async def upsert_batch(self, records: Sequence[PropertyRecord]) -> tuple[int, int]:
        """Upsert a batch keyed on (source, external_id). Returns (saved, errors)."""
        if not records:
            return 0, 0

        now = datetime.utcnow()
        try:
            existing = await self._run(self._existing_sync, list({r.key for r in records}))
            for record in records:
                match = existing.get(record.key)
                if match:
                    record.id = match[0]
                    record.created_at = datetime.fromisoformat(str(match[1]).replace("Z", "+00:00"))
                else:
                    record.created_at = record.created_at or now
                record.updated_at = now

            # Last occurrence wins for duplicate keys within the batch
            data = {record.key: self._record_to_dict(record) for record in records}
            rows = await self._run(self._upsert_sync, list(data.values()))
        except Exception as e:
            logger.error(f"Supabase upsert of {len(records)} records failed: {e}")
            return 0, len(records)

        ids = {(row["source"], row["external_id"]): row["id"] for row in rows if "id" in row}
        for record in records:
            record.id = ids.get(record.key, record.id)

        logger.info(f"Upserted {len(records)} records to Supabase")
        return len(records), 0

    async def find_by_id(self, property_id: int) -> Optional[PropertyRecord]:
        response = await self._run(
            lambda: self.client.table(self.table).select("*").eq("id", property_id).limit(1).execute()
        )
        rows = response.data or []
        return PropertyRecord(**rows[0]) if rows else None

    async def list_active(
        self, lat_min: float, lat_max: float, lng_min: float, lng_max: float
    ) -> list[PropertyRecord]:
        """Active records inside a bounding box."""
        response = await self._run(
            lambda: self.client.table(self.table)
            .select("*")
            .eq("is_active", True)
            .gte("latitude", lat_min)
            .lte("latitude", lat_max)
            .gte("longitude", lng_min)
            .lte("longitude", lng_max)
            .execute()
        )
        return [PropertyRecord(**row) for row in response.data or []]

    async def overall_scores(self, property_ids: Sequence[int]) -> dict[int, float]:
        if not property_ids:
            return {}
        response = await self._run(
            lambda: self.client.table(self.factors_table)
            .select("property_id, overall_score")
            .in_("property_id", list(property_ids))
            .execute()
        )
        return {row["property_id"]: row["overall_score"] for row in response.data or []}

    async def save_factors(self, factors: FactorSet) -> None:
        data = factors.model_dump()
        data["updated_at"] = datetime.utcnow().isoformat()
        await self._run(
            lambda: self.client.table(self.factors_table).upsert(data, on_conflict="property_id").execute()
        )

    def _record_to_dict(self, record: PropertyRecord) -> dict:
        """Convert PropertyRecord to a row; the database assigns `id`."""
        return record.model_dump(mode="json", exclude={"id"})

    async def test_connection(self) -> bool:
        """Test Supabase connection."""
        try:
            await self._run(
                lambda: self.client.table(self.table).select("id", count="exact").limit(1).execute()
            )
            logger.info("Supabase connection successful")
            return True
        except Exception as e:
            logger.error(f"Supabase connection test failed: {e}")
            return False
