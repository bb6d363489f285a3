"""
Webhook relay HTTP client

Fetches captured requests from a relay stream (webhook.site-style API) and
normalizes both response shapes, a `{"data": [...]}` collection and a bare
single request, into a list of Events.
"""

from __future__ import annotations

from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from transcript_monitor.errors import (
    AuthRequired,
    MalformedPayload,
    RateLimited,
    TransportError,
)
from transcript_monitor.schemas.events import Event, StreamKind
from transcript_monitor.utils.logging import get_logger

logger = get_logger(__name__, category="relay")

USER_AGENT = "TranscriptionMonitor/1.0"
RATE_LIMIT_MARKER = "Too Many Requests"


def with_newest_first(stream_url: str, page_size: int = 1) -> str:
    """Ask for the newest requests first unless the URL already picks a sort order."""
    url = httpx.URL(stream_url)
    if "sorting" in url.params:
        return str(url)
    return str(url.copy_merge_params({"sorting": "newest", "size": str(page_size)}))


def normalize_batch(data: Any) -> List[Any]:
    """Collapse the collection and single-item response shapes into a list."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if data.get("id") or data.get("uuid"):
            return [data]
        if isinstance(data.get("data"), list):
            return data["data"]
        return [data]
    raise MalformedPayload(f"Unexpected relay response type: {type(data).__name__}")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase or response.text[:200] or "Unknown error"


class RelayClient:
    """Thin async client over one or more relay streams."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: Relay API key sent as the Api-Key header when set
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key
        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self.http_client.aclose()

    def _headers(self, api_key: Optional[str]) -> dict:
        key = (api_key if api_key is not None else self.api_key) or ""
        key = key.strip()
        return {"Api-Key": key} if key else {}

    async def fetch_events(
        self,
        stream_url: str,
        kind: StreamKind,
        page_size: int = 1,
        api_key: Optional[str] = None,
    ) -> List[Event]:
        """
        Fetch the newest events of one relay stream.

        Raises:
            RateLimited: HTTP 429, or an error body mentioning Too Many Requests
            AuthRequired: HTTP 401
            TransportError: any other network failure or non-success status
            MalformedPayload: the body is not JSON
        """
        url = with_newest_first(stream_url, page_size)
        logger.debug(f"Fetching {kind.value} stream: {url}")

        try:
            response = await self.http_client.get(url, headers=self._headers(api_key))
        except httpx.RequestError as exc:
            raise TransportError(None, f"Request to relay failed: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            logger.debug(f"Relay returned {response.status_code} for {kind.value}: {message}")
            if response.status_code == 429 or RATE_LIMIT_MARKER in message:
                raise RateLimited(message, status=response.status_code)
            if response.status_code == 401:
                raise AuthRequired(
                    f"{message}. This token may require an API key.",
                    status=response.status_code,
                )
            raise TransportError(response.status_code, message)

        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedPayload(
                f"Relay returned non-JSON response ({response.headers.get('content-type')}): "
                f"{response.text[:200]}"
            ) from exc

        events: List[Event] = []
        for item in normalize_batch(data):
            if not isinstance(item, dict):
                logger.warning(f"Dropping non-object relay item: {item!r:.80}")
                continue
            try:
                events.append(Event.model_validate({**item, "source_kind": kind}))
            except (ValidationError, ValueError) as exc:
                logger.warning(f"Dropping malformed {kind.value} relay item: {exc}")

        logger.debug(f"Fetched {len(events)} {kind.value} events")
        return events
