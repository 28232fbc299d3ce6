"""HTTP client helpers for the storage backend and stream metadata provider."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..errors import PermanentRejectError, PlaybackUnavailableError, TransientIOError, VibesFlowError
from ..schemas import ChunkDescriptor, StreamChunksResponse
from ..store.settings_store import SettingsStore

# Status codes that mean the request itself is unacceptable.
REJECT_STATUSES = {400, 409, 413, 415, 422}


class ApiError(VibesFlowError):
    """Client is misconfigured (missing server URL or API key)."""


class ApiClient:
    def __init__(self, settings: SettingsStore, *, timeout: float = 15.0, client: Optional[httpx.Client] = None) -> None:
        self.settings_store = settings
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def _headers(self) -> dict:
        api_key = self.settings_store.get().api_key
        if not api_key:
            raise ApiError("API key missing")
        return {"X-API-Key": api_key}

    def _url(self, path: str) -> str:
        base = self.settings_store.get().server_url.rstrip("/")
        if not base:
            raise ApiError("Server URL missing")
        return f"{base}{path}"

    def test_connection(self) -> bool:
        try:
            resp = self._client.get(self._url("/healthz"), headers=self._headers())
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            raise TransientIOError(str(exc)) from exc

    def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request and translate failures into the pipeline taxonomy."""
        try:
            resp = self._client.request(method, self._url(path), headers=self._headers(), **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            detail = _error_detail(exc.response)
            if status in REJECT_STATUSES:
                raise PermanentRejectError(f"{status}: {detail}") from exc
            raise TransientIOError(f"{status}: {detail}") from exc
        except httpx.HTTPError as exc:
            raise TransientIOError(str(exc) or exc.__class__.__name__) from exc

    def fetch_descriptors(self, stream_id: str) -> List[ChunkDescriptor]:
        """Ordered chunk descriptors for a stored stream (one snapshot per load)."""
        resp = self.request("GET", f"/v1/streams/{stream_id}/chunks")
        try:
            payload = StreamChunksResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise TransientIOError(f"Invalid chunk listing: {exc}") from exc
        return sorted(payload.chunks, key=lambda item: item.sequence)

    def download_chunk(self, url: str, timeout: Optional[float] = None) -> bytes:
        target = url if url.startswith(("http://", "https://")) else self._url(url)
        try:
            resp = self._client.get(target, timeout=timeout or self.timeout)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PlaybackUnavailableError(f"Chunk fetch failed: {exc.response.status_code}") from exc
        except httpx.TimeoutException as exc:
            raise PlaybackUnavailableError(f"Chunk fetch timed out: {target}") from exc
        except httpx.HTTPError as exc:
            raise PlaybackUnavailableError(f"Chunk fetch failed: {exc}") from exc
        return resp.content

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def _error_detail(resp: httpx.Response) -> str:
    try:
        data: Dict[str, Any] = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(data, dict):
        return str(data.get("message") or data.get("detail") or data)[:200]
    return str(data)[:200]


__all__ = ["ApiClient", "ApiError", "REJECT_STATUSES"]
