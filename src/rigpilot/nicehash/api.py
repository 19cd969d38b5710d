"""Time-synchronized, signed HTTP transport for the NiceHash API v2.

NiceHash rejects requests whose ``X-Time`` drifts from its own clock, so the
client keeps one offset (server time minus local time) captured by
``sync_time()`` and refuses to sign anything until that has happened.

No retries: a failed call surfaces to the caller, and the rig poll loop
simply tries again on its next tick.
"""

from __future__ import annotations

from typing import Any, Self
from urllib.parse import parse_qsl

import httpx

from rigpilot.exceptions import NotSyncedError, RequestFailedError
from rigpilot.logging import get_logger
from rigpilot.models import now_ms
from rigpilot.nicehash.signing import create_nonce, serialize_body, serialize_query, sign

logger = get_logger(__name__)

USER_AGENT = "rigpilot/0.1.0"


class NiceHashApi:
    """Authenticated NiceHash API v2 client.

    Usage:
        async with NiceHashApi(host, api_key, api_secret, org_id) as api:
            await api.sync_time()
            rigs = await api.get("/main/api/v2/mining/rigs2")
    """

    def __init__(
        self,
        host: str,
        api_key: str,
        api_secret: str,
        org_id: str,
        locale: str = "en",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._host = host.rstrip("/")
        self._api_key = api_key
        self._api_secret = api_secret
        self._org_id = org_id
        self._locale = locale or "en"
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._time_offset: int | None = None
        self._server_time: int | None = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        await self._client.aclose()

    @property
    def is_synced(self) -> bool:
        return self._time_offset is not None

    @property
    def time_offset(self) -> int | None:
        """Milliseconds to add to local time to get NiceHash server time."""
        return self._time_offset

    @property
    def server_time(self) -> int | None:
        """Server time reported at the last sync."""
        return self._server_time

    async def sync_time(self) -> int:
        """Fetch NiceHash server time and store the local clock offset.

        Must be called once before any authenticated call; may be called again
        at any time to re-sync.

        Returns:
            The new offset in milliseconds.

        Raises:
            RequestFailedError: If the time endpoint cannot be reached or parsed.
        """
        try:
            response = await self._client.get(f"{self._host}/api/v2/time")
        except httpx.HTTPError as e:
            raise RequestFailedError(None, str(e)) from e
        if response.is_error:
            raise RequestFailedError(response.status_code, response.text)

        try:
            server_time = int(response.json()["serverTime"])
        except (ValueError, KeyError, TypeError) as e:
            raise RequestFailedError(response.status_code, response.text) from e

        self._server_time = server_time
        self._time_offset = server_time - now_ms()
        logger.info(
            "nicehash_time_synced",
            server_time=server_time,
            offset_ms=self._time_offset,
        )
        return self._time_offset

    async def call(
        self,
        method: str,
        path: str,
        query: dict[str, Any] | str | None = None,
        body: dict[str, Any] | list[Any] | str | None = None,
        time_override: int | None = None,
    ) -> Any:
        """Issue one signed request.

        A query string embedded in ``path`` is split off and merged with
        ``query``; keys given explicitly in ``query`` win.

        Args:
            method: HTTP method.
            path: API path, optionally with ``?query``.
            query: Extra query parameters.
            body: JSON body (dict/list) or pre-serialized JSON string.
            time_override: Local timestamp to use instead of now (offset still applied).

        Returns:
            Parsed JSON response, or an empty dict for an empty body.

        Raises:
            NotSyncedError: If ``sync_time()`` has not succeeded yet.
            RequestFailedError: On HTTP error status or network failure.
        """
        if self._time_offset is None:
            raise NotSyncedError("Server time not synced; call sync_time() first")

        method = method.upper()
        path_only, _, path_query = path.partition("?")
        if path_query:
            merged = dict(parse_qsl(path_query, keep_blank_values=True))
            if isinstance(query, str):
                merged.update(parse_qsl(query, keep_blank_values=True))
            elif query:
                merged.update(query)
            query = merged

        query_string = serialize_query(query) if query else ""
        body_string = serialize_body(body) if body else ""

        nonce = create_nonce()
        timestamp = str((time_override if time_override is not None else now_ms()) + self._time_offset)

        headers = {
            "Accept": "application/json, text/plain",
            "Content-Type": "application/json; charset=UTF-8",
            "X-Request-Id": nonce,
            "X-User-Agent": USER_AGENT,
            "X-Time": timestamp,
            "X-Nonce": nonce,
            "X-User-Lang": self._locale,
            "X-Organization-Id": self._org_id,
            "X-Auth": sign(
                self._api_key,
                self._api_secret,
                timestamp,
                nonce,
                self._org_id,
                method,
                path_only,
                query_string,
                body_string,
            ),
        }

        url = self._host + path_only
        if query_string:
            url = f"{url}?{query_string}"

        try:
            response = await self._client.request(
                method,
                url,
                headers=headers,
                content=body_string.encode("utf-8") if body_string else None,
            )
        except httpx.HTTPError as e:
            logger.warning("nicehash_request_error", method=method, path=path_only, error=str(e))
            raise RequestFailedError(None, str(e)) from e

        if response.is_error:
            logger.warning(
                "nicehash_request_rejected",
                method=method,
                path=path_only,
                status=response.status_code,
            )
            raise RequestFailedError(response.status_code, response.text)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RequestFailedError(response.status_code, response.text) from e

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.call("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.call("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> Any:
        return await self.call("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.call("DELETE", path, **kwargs)
