"""Async client for the liveness, attribution and decision endpoints."""
import asyncio
import json
import logging
from typing import Any, Optional
from urllib.parse import urlparse

import aiohttp
from pydantic import ValidationError

from ..schemas.remote import DecisionResponse, DeviceMetadata
from .exceptions import BadRequestError, DecodeError, GateClientError, TransportError


class RemoteServiceClient:
    """Async client for the three outbound gate operations.

    Only the decision fetch retries. Liveness and attribution are single
    attempts whose failures surface immediately.
    """

    RETRY_DELAYS = (7.0, 14.0, 28.0)  # seconds, one entry per attempt
    ATTRIBUTION_DELAY = 5.0  # seconds
    RATE_LIMIT_STATUS = 429

    REQUEST_TIMEOUT_SECONDS = 30
    CONNECT_TIMEOUT_SECONDS = 10

    def __init__(
        self,
        session: aiohttp.ClientSession,
        liveness_url: str,
        attribution_base_url: str,
        app_id: str,
        dev_key: str,
        decision_url: str,
        device: DeviceMetadata,
        user_agent: str = "",
        retry_delays: tuple[float, ...] = RETRY_DELAYS,
        attribution_delay: float = ATTRIBUTION_DELAY,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the remote service client.

        Args:
            session: Injected aiohttp ClientSession
            liveness_url: JSON document holding the liveness URL string
            attribution_base_url: e.g. "https://gcdsdk.appsflyer.com/install_data/v4.0"
            app_id: Store application id (without the "id" prefix)
            dev_key: Attribution provider dev key (never logged)
            decision_url: Decision endpoint accepting a JSON POST
            device: Device metadata merged into decision requests
            user_agent: Optional User-Agent header for decision requests
            retry_delays: Per-attempt delays for the decision fetch
            attribution_delay: Wait before the attribution request
            logger: Optional logger instance
        """
        self.session = session
        self.liveness_url = liveness_url
        self.attribution_base_url = attribution_base_url
        self.app_id = app_id
        self._dev_key = dev_key
        self.decision_url = decision_url
        self.device = device
        self.user_agent = user_agent
        self.retry_delays = tuple(retry_delays)
        self.attribution_delay = attribution_delay
        self.logger = logger or logging.getLogger(__name__)

    def set_push_token(self, token: Optional[str]) -> None:
        """Replace the push token reported with decision requests."""
        self.device = self.device.model_copy(update={"push_token": token})

    async def validate_liveness(self) -> bool:
        """Check that the liveness document holds a usable URL.

        Returns:
            True if the document is a non-empty absolute URL string

        Raises:
            BadRequestError: If the liveness URL is malformed
            TransportError: On non-2xx or network failure
            DecodeError: If the body is not JSON
        """
        url = self._checked_url(self.liveness_url)

        try:
            async with self.session.get(url, timeout=self._timeout()) as resp:
                if not 200 <= resp.status < 300:
                    raise TransportError(
                        f"Liveness check failed: HTTP {resp.status}", status=resp.status
                    )
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Liveness network error: {e}") from e

        try:
            value = json.loads(text)
        except ValueError as e:
            raise DecodeError("Liveness body is not JSON", text) from e

        is_live = _is_absolute_url(value)
        self.logger.info("Liveness check result: %s", is_live)
        return is_live

    async def fetch_attribution(self, device_id: str) -> dict:
        """Fetch install attribution data for a device.

        Waits ``attribution_delay`` first so deep-link data can land before
        the organic flow continues.

        Args:
            device_id: Attribution provider device identifier

        Returns:
            Attribution payload as returned by the provider

        Raises:
            BadRequestError: If the endpoint URL is malformed
            TransportError: On non-2xx or network failure
            DecodeError: If the body is not a JSON object
        """
        await asyncio.sleep(self.attribution_delay)

        url = self._checked_url(
            f"{self.attribution_base_url.rstrip('/')}/id{self.app_id}"
        )
        params = {"devkey": self._dev_key, "device_id": device_id}
        headers = {"Accept": "application/json"}

        try:
            async with self.session.get(
                url, params=params, headers=headers, timeout=self._timeout()
            ) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise TransportError(
                        f"Attribution fetch failed: HTTP {resp.status}",
                        status=resp.status,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Attribution network error: {e}") from e

        try:
            data = json.loads(text)
        except ValueError as e:
            raise DecodeError("Attribution body is not JSON", text) from e

        if not isinstance(data, dict):
            raise DecodeError("Attribution body is not an object", text)

        self.logger.info("Fetched attribution data: %s keys", len(data))
        return data

    async def fetch_decision(self, payload: dict[str, Any]) -> str:
        """Ask the decision endpoint which resource to activate.

        Attempt ``i`` (0-based) waits ``retry_delays[i]`` after a failure.
        HTTP 429 instead waits ``retry_delays[i] * (i + 1)`` and moves
        straight to the next attempt.

        Args:
            payload: Attribution payload (merged tracking data)

        Returns:
            Decided resource string

        Raises:
            GateClientError: Last error once every attempt has failed
        """
        url = self._checked_url(self.decision_url)
        body = self.build_decision_payload(payload)
        headers = {"Content-Type": "application/json"}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent

        last_error: Optional[GateClientError] = None
        attempts = len(self.retry_delays)

        for index, delay in enumerate(self.retry_delays):
            attempt = index + 1
            try:
                status, text = await self._post_json(url, body, headers)

                if status == self.RATE_LIMIT_STATUS:
                    backoff = delay * attempt
                    last_error = TransportError(
                        f"HTTP 429 after {attempt} attempts", status=status
                    )
                    self.logger.warning(
                        "Decision HTTP 429, backoff=%.1fs, attempt=%s", backoff, attempt
                    )
                    await asyncio.sleep(backoff)
                    continue

                if not 200 <= status < 300:
                    raise TransportError(
                        f"Decision fetch failed: HTTP {status}: {text[:200]}",
                        status=status,
                    )

                resource = self._decode_decision(text)
                self.logger.info("Decision received on attempt %s", attempt)
                return resource

            except GateClientError as e:
                last_error = e

            if index < attempts - 1:
                self.logger.warning(
                    "Decision attempt %s failed: %s, retrying in %.1fs",
                    attempt,
                    last_error,
                    delay,
                )
                await asyncio.sleep(delay)

        self.logger.error("Decision fetch exhausted %s attempts", attempts)
        raise last_error or TransportError("Decision fetch failed")

    def build_decision_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Merge attribution payload with device metadata (metadata wins)."""
        merged = dict(payload)
        merged.update(self.device.to_request_fields())
        return merged

    async def _post_json(
        self, url: str, body: dict, headers: dict
    ) -> tuple[int, str]:
        try:
            async with self.session.post(
                url, json=body, headers=headers, timeout=self._timeout()
            ) as resp:
                return resp.status, await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Decision network error: {e}") from e

    @staticmethod
    def _decode_decision(text: str) -> str:
        try:
            decision = DecisionResponse.model_validate_json(text)
        except ValidationError as e:
            raise DecodeError("Malformed decision body", text) from e

        if not decision.ok:
            raise DecodeError("Decision body reported ok=false", text)
        return decision.url

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.REQUEST_TIMEOUT_SECONDS, connect=self.CONNECT_TIMEOUT_SECONDS
        )

    @staticmethod
    def _checked_url(url: str) -> str:
        if not _is_absolute_url(url):
            raise BadRequestError(url)
        return url


def _is_absolute_url(value: object) -> bool:
    """True for non-empty http(s) URL strings with a host."""
    if not isinstance(value, str) or not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)
