"""Persistence gateway contract and shared key/value encoding."""
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Protocol

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


class StateKeys:
    """Storage keys, one per persisted fact."""

    TRACKING = "tracking_info"
    LINKING = "linking_info"
    RESOURCE = "resource_url"
    MODE = "mode_setting"
    FIRST_RUN_DONE = "first_run_done"
    ALERT_ACCEPTED = "alert_accepted"
    ALERT_REJECTED = "alert_rejected"
    ALERT_REQUESTED_AT = "alert_requested_at"
    PENDING_RESOURCE = "pending_resource_url"
    PUSH_TOKEN = "push_token"
    ATTRIBUTION_MERGED = "attribution_merged"


class AlertRecord(BaseModel):
    """Persisted permission-prompt history."""

    accepted: bool = False
    rejected: bool = False
    requested_at: Optional[datetime] = None


class LoadedData(BaseModel):
    """Everything restored from storage at boot."""

    resource: Optional[str] = Field(None, description="Previously decided resource")
    mode: Optional[str] = None
    first_run: bool = Field(True, description="True until a decision was persisted")
    tracking: dict[str, str] = Field(default_factory=dict)
    linking: dict[str, str] = Field(default_factory=dict)
    alerts: AlertRecord = Field(default_factory=AlertRecord)
    pending_resource: Optional[str] = Field(
        None, description="Resource captured from a push notification"
    )
    push_token: Optional[str] = None


class PersistenceGateway(Protocol):
    """Durable key/value store used by the runtime. No business logic."""

    async def save_tracking(self, payload: dict[str, str]) -> None: ...

    async def save_linking(self, payload: dict[str, str]) -> None: ...

    async def save_resource(self, url: str) -> None: ...

    async def save_mode(self, mode: str) -> None: ...

    async def mark_first_run_done(self) -> None: ...

    async def save_alerts(
        self, accepted: bool, rejected: bool, requested_at: Optional[datetime]
    ) -> None: ...

    async def save_pending_resource(self, url: Optional[str]) -> None: ...

    async def save_push_token(self, token: str) -> None: ...

    async def is_attribution_merged(self) -> bool: ...

    async def mark_attribution_merged(self) -> None: ...

    async def load_all(self) -> LoadedData: ...


class KeyValuePersistence(ABC):
    """Gateway implemented on three string primitives: get, set, delete.

    Each save touches its own key(s); there is no cross-key transaction, so
    concurrent saves to distinct keys are independent and a single key is
    last-writer-wins.
    """

    @abstractmethod
    async def _get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def _set(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def _delete(self, key: str) -> None: ...

    async def save_tracking(self, payload: dict[str, str]) -> None:
        await self._set(StateKeys.TRACKING, _dump_payload(payload))

    async def save_linking(self, payload: dict[str, str]) -> None:
        await self._set(StateKeys.LINKING, _dump_payload(payload))

    async def save_resource(self, url: str) -> None:
        await self._set(StateKeys.RESOURCE, url)

    async def save_mode(self, mode: str) -> None:
        await self._set(StateKeys.MODE, mode)

    async def mark_first_run_done(self) -> None:
        await self._set(StateKeys.FIRST_RUN_DONE, "1")

    async def save_alerts(
        self, accepted: bool, rejected: bool, requested_at: Optional[datetime]
    ) -> None:
        await self._set(StateKeys.ALERT_ACCEPTED, "1" if accepted else "0")
        await self._set(StateKeys.ALERT_REJECTED, "1" if rejected else "0")
        # An absent timestamp leaves the previous one in place
        if requested_at is not None:
            await self._set(StateKeys.ALERT_REQUESTED_AT, requested_at.isoformat())

    async def save_pending_resource(self, url: Optional[str]) -> None:
        if url:
            await self._set(StateKeys.PENDING_RESOURCE, url)
        else:
            await self._delete(StateKeys.PENDING_RESOURCE)

    async def save_push_token(self, token: str) -> None:
        await self._set(StateKeys.PUSH_TOKEN, token)

    async def is_attribution_merged(self) -> bool:
        return await self._get(StateKeys.ATTRIBUTION_MERGED) == "1"

    async def mark_attribution_merged(self) -> None:
        await self._set(StateKeys.ATTRIBUTION_MERGED, "1")

    async def load_all(self) -> LoadedData:
        """Restore persisted state; unreadable values fall back to defaults."""
        requested_raw = await self._get(StateKeys.ALERT_REQUESTED_AT)

        return LoadedData(
            resource=await self._get(StateKeys.RESOURCE),
            mode=await self._get(StateKeys.MODE),
            first_run=await self._get(StateKeys.FIRST_RUN_DONE) != "1",
            tracking=_load_payload(await self._get(StateKeys.TRACKING)),
            linking=_load_payload(await self._get(StateKeys.LINKING)),
            alerts=AlertRecord(
                accepted=await self._get(StateKeys.ALERT_ACCEPTED) == "1",
                rejected=await self._get(StateKeys.ALERT_REJECTED) == "1",
                requested_at=_parse_timestamp(requested_raw),
            ),
            pending_resource=await self._get(StateKeys.PENDING_RESOURCE),
            push_token=await self._get(StateKeys.PUSH_TOKEN),
        )


def _dump_payload(payload: dict[str, str]) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True)


def _load_payload(raw: Optional[str]) -> dict[str, str]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Discarding unreadable stored payload")
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(key): str(value) for key, value in data.items()}


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        logger.warning("Discarding unreadable alert timestamp: %s", raw[:40])
        return None
