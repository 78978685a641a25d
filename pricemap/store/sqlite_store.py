"""SQLite property store."""
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

import aiosqlite
import orjson

from pricemap.config import PROPERTIES_DB
from pricemap.parse.models import FactorSet, PropertyRecord

logger = logging.getLogger(__name__)

# Written on insert and update
DATA_COLUMNS = [
    "updated_at", "source", "external_id", "url",
    "country", "city", "district", "address", "latitude", "longitude",
    "type", "price", "currency", "area", "rooms", "bedrooms", "bathrooms",
    "floor", "total_floors", "year_built", "description", "images",
    "scraped_at", "is_active",
]
INSERT_COLUMNS = ["created_at"] + DATA_COLUMNS
# Keys per existing-row lookup; SQLite caps expression depth at 1000
LOOKUP_CHUNK = 300
UPSERT_SQL = (
    f"INSERT INTO properties ({', '.join(INSERT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in INSERT_COLUMNS)}) "
    "ON CONFLICT(source, external_id) DO UPDATE SET "
    + ", ".join(f"{col} = excluded.{col}" for col in DATA_COLUMNS if col not in ("source", "external_id"))
)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLitePropertyStore:
    """SQLite database holding canonical property records."""

    def __init__(self, db_path: Path = PROPERTIES_DB):
        self.db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS properties (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    source TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    url TEXT,
                    country TEXT NOT NULL,
                    city TEXT NOT NULL,
                    district TEXT,
                    address TEXT,
                    latitude REAL NOT NULL,
                    longitude REAL NOT NULL,
                    type TEXT NOT NULL,
                    price REAL NOT NULL,
                    currency TEXT DEFAULT 'USD',
                    area REAL,
                    rooms INTEGER,
                    bedrooms INTEGER,
                    bathrooms INTEGER,
                    floor INTEGER,
                    total_floors INTEGER,
                    year_built INTEGER,
                    description TEXT,
                    images TEXT,
                    scraped_at TIMESTAMP NOT NULL,
                    is_active INTEGER DEFAULT 1,
                    UNIQUE (source, external_id)
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS property_factors (
                    property_id INTEGER PRIMARY KEY REFERENCES properties(id),
                    crime_score REAL DEFAULT 0,
                    transport_score REAL DEFAULT 0,
                    education_score REAL DEFAULT 0,
                    infrastructure_score REAL DEFAULT 0,
                    overall_score REAL DEFAULT 0,
                    updated_at TIMESTAMP
                )
                """
            )
            await db.execute("CREATE INDEX IF NOT EXISTS idx_location ON properties(latitude, longitude)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_city ON properties(city)")
            await db.commit()
            logger.info(f"Property database initialized at {self.db_path}")

    async def close(self) -> None:
        """Connections are per call, nothing to release."""

    @staticmethod
    def _to_row(record: PropertyRecord) -> tuple:
        return (
            record.created_at.isoformat(),
            record.updated_at.isoformat(),
            record.source,
            record.external_id,
            record.url,
            record.country,
            record.city,
            record.district,
            record.address,
            record.latitude,
            record.longitude,
            record.type,
            record.price,
            record.currency,
            record.area,
            record.rooms,
            record.bedrooms,
            record.bathrooms,
            record.floor,
            record.total_floors,
            record.year_built,
            record.description,
            orjson.dumps(record.images).decode(),
            record.scraped_at.isoformat(),
            int(record.is_active),
        )

    @staticmethod
    def _from_row(row: aiosqlite.Row) -> PropertyRecord:
        data = dict(row)
        data["created_at"] = _dt(data["created_at"])
        data["updated_at"] = _dt(data["updated_at"])
        data["scraped_at"] = _dt(data["scraped_at"])
        data["images"] = orjson.loads(data["images"]) if data.get("images") else []
        data["is_active"] = bool(data["is_active"])
        for key in ("url", "district", "address", "description"):
            data[key] = data.get(key) or ""
        return PropertyRecord(**data)

    @staticmethod
    async def _existing(
        db: aiosqlite.Connection, records: Sequence[PropertyRecord]
    ) -> dict[tuple[str, str], tuple[int, str]]:
        """(source, external_id) -> (id, created_at) for keys already stored."""
        keys = list({record.key for record in records})
        found = {}
        for start in range(0, len(keys), LOOKUP_CHUNK):
            chunk = keys[start : start + LOOKUP_CHUNK]
            clause = " OR ".join("(source = ? AND external_id = ?)" for _ in chunk)
            params = [value for key in chunk for value in key]
            cursor = await db.execute(
                f"SELECT id, created_at, source, external_id FROM properties WHERE {clause}", params
            )
            for row in await cursor.fetchall():
                found[(row[2], row[3])] = (row[0], row[1])
        return found

    async def upsert_batch(self, records: Sequence[PropertyRecord]) -> tuple[int, int]:
        """Insert or update a batch in one transaction. Returns (saved, errors)."""
        if not records:
            return 0, 0

        now = datetime.utcnow()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                existing = await self._existing(db, records)
                for record in records:
                    match = existing.get(record.key)
                    if match:
                        record.id = match[0]
                        record.created_at = _dt(match[1])
                    else:
                        record.created_at = record.created_at or now
                    record.updated_at = now

                await db.executemany(UPSERT_SQL, [self._to_row(record) for record in records])

                # Pick up ids of the rows that were just created
                stored = await self._existing(db, records)
                for record in records:
                    record.id, created_at = stored[record.key]
                    record.created_at = _dt(created_at)
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Batch upsert of {len(records)} records failed: {e}")
            return 0, len(records)

        logger.debug(f"Upserted {len(records)} records")
        return len(records), 0

    async def find_by_id(self, property_id: int) -> Optional[PropertyRecord]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM properties WHERE id = ?", (property_id,))
            row = await cursor.fetchone()
            return self._from_row(row) if row else None

    async def list_active(
        self, lat_min: float, lat_max: float, lng_min: float, lng_max: float
    ) -> list[PropertyRecord]:
        """Active records inside a bounding box."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT * FROM properties
                WHERE is_active = 1
                  AND latitude >= ? AND latitude <= ?
                  AND longitude >= ? AND longitude <= ?
                """,
                (lat_min, lat_max, lng_min, lng_max),
            )
            return [self._from_row(row) for row in await cursor.fetchall()]

    async def save_factors(self, factors: FactorSet) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO property_factors
                    (property_id, crime_score, transport_score, education_score,
                     infrastructure_score, overall_score, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, datetime('now'))
                """,
                (
                    factors.property_id,
                    factors.crime_score,
                    factors.transport_score,
                    factors.education_score,
                    factors.infrastructure_score,
                    factors.overall_score,
                ),
            )
            await db.commit()

    async def overall_scores(self, property_ids: Sequence[int]) -> dict[int, float]:
        """property_id -> overall_score for the ids that have factors."""
        if not property_ids:
            return {}
        placeholders = ", ".join("?" for _ in property_ids)
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"SELECT property_id, overall_score FROM property_factors WHERE property_id IN ({placeholders})",
                list(property_ids),
            )
            return {row[0]: row[1] for row in await cursor.fetchall()}

    async def count(self) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM properties")
            row = await cursor.fetchone()
            return row[0]
