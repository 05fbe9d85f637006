from __future__ import annotations

from dataclasses import dataclass

from shared.config import Settings, settings as default_settings
from shared.services.activity_ledger import ActivityLedger
from shared.services.consistency import ConsistencyChecker
from shared.services.directory import EmployeeDirectory
from shared.services.shift_store import ShiftStore
from shared.services.shifts_service import ShiftService
from shared.services.swap_engine import SwapRequestEngine
from shared.store.base import Store
from shared.store.factory import build_store


@dataclass
class SchedulingCore:
    """Services wired over one store, shared by the web app and the bot."""

    store: Store
    directory: EmployeeDirectory
    shifts: ShiftStore
    ledger: ActivityLedger
    swaps: SwapRequestEngine
    shift_service: ShiftService
    checker: ConsistencyChecker
    settings: Settings

    async def close(self) -> None:
        await self.store.close()


def build_core(store: Store | None = None, cfg: Settings | None = None) -> SchedulingCore:
    cfg = cfg or default_settings
    store = store or build_store(cfg)
    shifts = ShiftStore(store)
    ledger = ActivityLedger(store)
    return SchedulingCore(
        store=store,
        directory=EmployeeDirectory(store),
        shifts=shifts,
        ledger=ledger,
        swaps=SwapRequestEngine(store, shifts, ledger, reject_duplicate_pending=cfg.SWAP_REJECT_DUPLICATE_PENDING),
        shift_service=ShiftService(shifts, ledger),
        checker=ConsistencyChecker(store),
        settings=cfg,
    )
