"""Rig API interface and its NiceHash implementation.

Controller and orchestrator code depends only on ``RigApi``,
keeping NiceHash endpoint paths and payload shapes isolated here.
"""

from abc import ABC, abstractmethod
from typing import Any

from rigpilot.config import NiceHashSettings
from rigpilot.logging import get_logger
from rigpilot.models import PowerMode, RigSummary
from rigpilot.nicehash.api import NiceHashApi

logger = get_logger(__name__)

_RIGS_PATH = "/main/api/v2/mining/rigs2"
_RIG_DETAILS_PATH = "/main/api/v2/mining/rig2/{rig_id}"
_RIG_STATUS_PATH = "/main/api/v2/mining/rigs/status2"
_ALGORITHMS_PATH = "/main/api/v2/mining/algorithms"


class RigApi(ABC):
    """Abstract base class for mining-rig API clients."""

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the client for authenticated calls (time sync)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Clean up transport resources."""
        ...

    @abstractmethod
    async def get_rigs(self) -> list[RigSummary]:
        """Return every rig registered on the account."""
        ...

    @abstractmethod
    async def get_rig_details(self, rig_id: str) -> dict:
        """Return the raw rig-details payload for one rig."""
        ...

    @abstractmethod
    async def set_rig_status(self, rig_id: str, on: bool) -> dict:
        """Start (True) or stop (False) mining on a rig."""
        ...

    @abstractmethod
    async def set_rig_power_mode(self, rig_id: str, mode: PowerMode) -> dict:
        """Switch a rig's power mode."""
        ...

    @abstractmethod
    async def get_algorithms(self) -> list[dict]:
        """Return the algorithm directory as ``[{"id": int, "title": str}, ...]``."""
        ...


class NiceHashClient(RigApi):
    """Concrete rig client over the signed NiceHash API v2."""

    def __init__(self, settings: NiceHashSettings, api: NiceHashApi | None = None) -> None:
        self._settings = settings
        self._api = api or NiceHashApi(
            host=settings.api_host,
            api_key=settings.api_key.get_secret_value(),
            api_secret=settings.api_secret.get_secret_value(),
            org_id=settings.org_id,
            locale=settings.locale,
            timeout=settings.request_timeout,
        )

    @property
    def api(self) -> NiceHashApi:
        """Access the underlying signed transport."""
        return self._api

    async def connect(self) -> None:
        """Sync with NiceHash server time."""
        logger.info("connecting_to_nicehash", host=self._settings.api_host)
        await self._api.sync_time()
        logger.info("nicehash_connected", server_time=self._api.server_time)

    async def close(self) -> None:
        logger.info("closing_nicehash_connection")
        await self._api.close()

    async def get_rigs(self) -> list[RigSummary]:
        response = await self._api.get(_RIGS_PATH)
        rigs = [
            RigSummary(
                rig_id=str(rig["rigId"]),
                name=rig.get("name") or str(rig["rigId"]),
                rig_type=rig.get("type"),
            )
            for rig in response.get("miningRigs", [])
            if rig.get("rigId")
        ]
        logger.debug("fetched_rigs", count=len(rigs))
        return rigs

    async def get_rig_details(self, rig_id: str) -> dict:
        return await self._api.get(_RIG_DETAILS_PATH.format(rig_id=rig_id))

    async def set_rig_status(self, rig_id: str, on: bool) -> dict:
        action = "START" if on else "STOP"
        logger.info("setting_rig_status", rig_id=rig_id, action=action)
        body = {"rigId": rig_id, "action": action}
        return await self._api.post(_RIG_STATUS_PATH, body=body)

    async def set_rig_power_mode(self, rig_id: str, mode: PowerMode) -> dict:
        mode = PowerMode(mode)
        logger.info("setting_rig_power_mode", rig_id=rig_id, mode=mode.value)
        body = {"rigId": rig_id, "action": "POWER_MODE", "options": [mode.value]}
        return await self._api.post(_RIG_STATUS_PATH, body=body)

    async def get_algorithms(self) -> list[dict]:
        """Fetch the algorithm directory.

        NiceHash identifies v4 algorithm readings by the algorithm's ``order``
        field, so that is what becomes ``id`` here.
        """
        response = await self._api.get(_ALGORITHMS_PATH)
        algorithms: list[dict[str, Any]] = []
        for algo in response.get("miningAlgorithms", []):
            if "order" not in algo or not algo.get("title"):
                continue
            algorithms.append({"id": int(algo["order"]), "title": algo["title"]})
        return algorithms
