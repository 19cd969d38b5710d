"""Typed read/write access to persisted rig state.

What survives a restart: the owner's autopilot settings for the rig, the
learned tariff limit, when the rig last mined, and its cumulative meters.
The rolling average and benchmark window are deliberately not stored; a
restarted process re-benchmarks from scratch.

CRITICAL: All monetary values stored as TEXT in SQLite, restored as Decimal on read.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal

from rigpilot.data.database import StateDatabase
from rigpilot.logging import get_logger
from rigpilot.models import CumulativeMeters

logger = get_logger(__name__)


@dataclass
class StoredRigState:
    """Persisted slice of one rig's state."""

    rig_id: str
    name: str
    autopilot_enabled: bool = False
    min_profitability: Decimal = Decimal("0")
    learned_tariff_limit: Decimal | None = None
    last_mined_at: int | None = None
    meters: CumulativeMeters = field(default_factory=CumulativeMeters)


class RigStateStore:
    """Async SQLite store for per-rig state."""

    def __init__(self, database: StateDatabase) -> None:
        self._database = database

    async def save(self, state: StoredRigState) -> None:
        """Insert or replace a rig's persisted state."""
        meters = state.meters
        await self._database.db.execute(
            "INSERT OR REPLACE INTO rig_state "
            "(rig_id, name, autopilot_enabled, min_profitability, learned_tariff_limit, "
            "last_mined_at, energy_kwh, revenue_mbtc, cost_mbtc, revenue_local, cost_local, "
            "updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                state.rig_id,
                state.name,
                int(state.autopilot_enabled),
                str(state.min_profitability),
                str(state.learned_tariff_limit) if state.learned_tariff_limit is not None else None,
                state.last_mined_at,
                str(meters.energy_kwh),
                str(meters.revenue_mbtc),
                str(meters.cost_mbtc),
                str(meters.revenue_local),
                str(meters.cost_local),
                int(time.time() * 1000),
            ),
        )
        await self._database.db.commit()

    async def load(self, rig_id: str) -> StoredRigState | None:
        """Return the persisted state for a rig, or None if never saved."""
        cursor = await self._database.db.execute(
            "SELECT rig_id, name, autopilot_enabled, min_profitability, learned_tariff_limit, "
            "last_mined_at, energy_kwh, revenue_mbtc, cost_mbtc, revenue_local, cost_local "
            "FROM rig_state WHERE rig_id = ?",
            (rig_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return StoredRigState(
            rig_id=row[0],
            name=row[1],
            autopilot_enabled=bool(row[2]),
            min_profitability=Decimal(row[3]),
            learned_tariff_limit=Decimal(row[4]) if row[4] is not None else None,
            last_mined_at=row[5],
            meters=CumulativeMeters(
                energy_kwh=Decimal(row[6]),
                revenue_mbtc=Decimal(row[7]),
                cost_mbtc=Decimal(row[8]),
                revenue_local=Decimal(row[9]),
                cost_local=Decimal(row[10]),
            ),
        )

    async def delete(self, rig_id: str) -> None:
        """Discard a rig's state (rig removed)."""
        await self._database.db.execute("DELETE FROM rig_state WHERE rig_id = ?", (rig_id,))
        await self._database.db.commit()
        logger.info("rig_state_deleted", rig_id=rig_id)

    async def list_rig_ids(self) -> list[str]:
        cursor = await self._database.db.execute("SELECT rig_id FROM rig_state ORDER BY rig_id")
        rows = await cursor.fetchall()
        return [row[0] for row in rows]
