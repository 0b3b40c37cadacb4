"""Store catalog loader with database-first approach, falling back to a CSV seed file."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from ..config import settings
from ..db.supabase import get_supabase_client
from ..models.domain import Coordinate, Store

logger = logging.getLogger(__name__)


def _coerce_float(value: object) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace(",", ""))
    except ValueError as exc:
        raise ValueError(f"Unable to parse float from value '{value}'") from exc


def _row_to_store(row: dict) -> Store | None:
    lat = _coerce_float(row.get("latitude"))
    lon = _coerce_float(row.get("longitude"))
    if lat is None or lon is None:
        return None  # stores without coordinates cannot be ranked
    coordinate = Coordinate(lat, lon)
    return Store(
        store_id=str(row["id"]).strip(),
        name=str(row.get("name") or "").strip(),
        latitude=coordinate.latitude,
        longitude=coordinate.longitude,
        address=(str(row.get("address") or "").strip() or None),
    )


class StoreCatalog:
    def __init__(
        self,
        client_factory: Callable[[], Awaitable[object]] = get_supabase_client,
        seed_file: Path | None = None,
    ) -> None:
        self._client_factory = client_factory
        self.seed_file = seed_file if seed_file is not None else settings.stores_file

    async def _load_from_database(self) -> tuple[Store, ...] | None:
        """Load stores from Supabase. Returns None if the database is not available."""
        client = await self._client_factory()
        if not client:
            return None

        try:
            response = await client.table("stores").select("id, name, address, latitude, longitude").execute()
        except Exception as e:
            logger.warning(f"Store query failed, falling back to seed file: {e}")
            return None

        stores: list[Store] = []
        for row in response.data or []:
            try:
                store = _row_to_store(row)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid store row: {e}")
                continue
            if store is not None:
                stores.append(store)
        return tuple(stores)

    def _load_from_file(self) -> tuple[Store, ...]:
        if self.seed_file is None:
            return tuple()
        if not self.seed_file.exists():
            raise FileNotFoundError(f"Store seed file not found: {self.seed_file}")

        stores: list[Store] = []
        with self.seed_file.open(mode="r", encoding="utf-8-sig", newline="") as handle:
            reader = csv.DictReader(handle)
            if not reader.fieldnames:
                raise ValueError(f"Store file '{self.seed_file}' is missing a header row.")
            for line_number, row in enumerate(reader, start=2):
                try:
                    store = _row_to_store({key.strip().lower(): value for key, value in row.items() if key})
                except (KeyError, ValueError) as e:
                    logger.warning(f"Skipping invalid store row on line {line_number} of {self.seed_file.name}: {e}")
                    continue
                if store is not None:
                    stores.append(store)
        return tuple(stores)

    async def load(self) -> tuple[Store, ...]:
        """Get stores from the database first, the seed file if the database is unavailable."""
        db_stores = await self._load_from_database()
        if db_stores is not None:
            return db_stores
        return self._load_from_file()
