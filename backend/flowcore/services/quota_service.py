# /flowcore/services/quota_service.py

import logging
import time
from typing import Dict, Optional

from flowcore.config.settings import settings
from flowcore.services.session_store import SessionStore, session_store

# Usage ledger and quota checks. Usage is recorded per user as (timestamp,
# model, units) entries; the quota is a price limit over a rolling window.

logger = logging.getLogger(__name__)

USAGE_KEY_PREFIX = "flowcore_usage"
UNLIMITED = -1


class QuotaService:
    def __init__(self, store: SessionStore, default_quota: float = UNLIMITED, prices: Optional[Dict[str, float]] = None, window_seconds: int = 86400):
        self.store = store
        self.default_quota = default_quota
        self.prices = prices or {}
        self.window_seconds = window_seconds
        self._quotas: Dict[str, float] = {}

    def set_quota(self, id: str, org: Optional[str], quota: float):
        self._quotas[f"{org}:{id}"] = quota

    def quota_for(self, id: str, org: Optional[str]) -> float:
        return self._quotas.get(f"{org}:{id}", self.default_quota)

    async def log_usage(self, id: str, units: Optional[float], model: str):
        if not id or units is None:
            return
        key = f"{USAGE_KEY_PREFIX}_{id}"
        now = time.time()
        ledger = await self.store.get(key, [])
        ledger = [entry for entry in ledger if entry.get("ts", 0) >= now - self.window_seconds]
        ledger.append({"ts": now, "model": model, "units": float(units)})
        await self.store.set(key, ledger)

    async def used_in_window(self, id: str) -> float:
        now = time.time()
        ledger = await self.store.get(f"{USAGE_KEY_PREFIX}_{id}", [])
        return sum(
            entry["units"] * self.prices.get(entry.get("model"), 1.0)
            for entry in ledger
            if entry.get("ts", 0) >= now - self.window_seconds
        )

    async def check_quota(self, id: str, org: Optional[str] = None) -> bool:
        allowed = self.quota_for(id, org)
        if allowed == UNLIMITED:
            logger.debug(f"No quota set for ID {id}, not checking or enforcing.")
            return True
        used = await self.used_in_window(id)
        if used > allowed:
            logger.error(f"Quota overuse for ID {id} from org {org}, allowed = {allowed}, used = {used}.")
            return False
        logger.info(f"Quota underuse for ID {id} from org {org}, allowed = {allowed}, used = {used}, allowing.")
        return True


# Globally accessible instance
quota_service = QuotaService(session_store, settings.default_quota, settings.model_prices, settings.quota_window_seconds)
