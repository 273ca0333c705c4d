"""Outlet list handling: load, sync, sample and look up stores."""

import json
import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import structlog

from .errors import ConfigError
from .ledger import utc_now
from .models import Outlet
from .storage import PriceHistoryStore

logger = structlog.get_logger(__name__)


def outlet_from_api(raw: Dict[str, Any]) -> Outlet:
    """Build an Outlet from an upstream store object."""
    return Outlet(
        outlet_id=str(raw.get("id") or raw.get("outlet_id")),
        name=raw.get("name") or "",
        address=raw.get("address"),
        region=raw.get("region"),
        lat=raw.get("latitude", raw.get("lat")),
        lon=raw.get("longitude", raw.get("lon")),
    )


def load_outlets(path: str) -> List[Outlet]:
    """
    Load outlets from a JSON file holding a list of store objects.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigError(f"Outlets file not found: {path}")

    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in outlets file {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("stores", [])
    if not isinstance(data, list):
        raise ConfigError(f"Outlets file {path} must contain a list of stores")

    return [outlet_from_api(item) for item in data if isinstance(item, dict)]


def sync_outlets(store: PriceHistoryStore, outlets: Sequence[Outlet]) -> int:
    """Upsert outlets with a shared ``last_synced`` timestamp (one transaction)."""
    if not outlets:
        return 0

    timestamp = utc_now()
    stamped = [outlet.model_copy(update={"last_synced": timestamp}) for outlet in outlets]
    count = store.upsert_outlets(stamped)
    logger.info("outlets_synced", count=count)
    return count


def sample_outlets(
    outlets: Sequence[Outlet],
    count: int,
    rng: Optional[random.Random] = None,
) -> List[Outlet]:
    """Random sample of ``count`` outlets (all of them if count >= len)."""
    if count <= 0 or not outlets:
        return []
    if count >= len(outlets):
        return list(outlets)

    shuffled = list(outlets)
    (rng or random).shuffle(shuffled)
    return shuffled[:count]


def find_outlet_by_name(outlets: Sequence[Outlet], name: str) -> Optional[Outlet]:
    """Case-insensitive lookup preferring an exact match over a partial one."""
    needle = name.lower()
    for outlet in outlets:
        if outlet.name.lower() == needle:
            return outlet
    for outlet in outlets:
        if needle in outlet.name.lower():
            return outlet
    return None


def find_outlets_by_name(outlets: Sequence[Outlet], name: str) -> List[Outlet]:
    """All outlets whose name contains ``name`` (case-insensitive)."""
    needle = name.lower()
    return [outlet for outlet in outlets if needle in outlet.name.lower()]
