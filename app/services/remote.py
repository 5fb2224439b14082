"""
Remote-call collaborator used to reach domain agents over HTTP.
"""

import json
from typing import Any, Optional, Protocol

import httpx
import structlog
from pydantic import BaseModel

from app.core.config import settings
from app.core.errors import RemoteCallError

logger = structlog.get_logger(__name__)


class RemoteResponse(BaseModel):
    """Status and decoded body of a remote call."""
    status_code: int
    body: Optional[Any] = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class RemoteCaller(Protocol):
    """Performs one HTTP call. Raises RemoteCallError on transport failure."""

    async def call(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> RemoteResponse:
        ...


def decode_body(raw: bytes) -> Optional[Any]:
    """Decode a JSON body, returning None when it is empty or not JSON."""
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


class HttpxRemoteCaller:
    """RemoteCaller backed by httpx.AsyncClient."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self._timeout = timeout or settings.delegate_timeout_seconds

    async def call(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> RemoteResponse:
        method = method.upper()
        request_kwargs: dict[str, Any] = {"headers": headers or {}}
        if method != "GET":
            request_kwargs["json"] = body or {}

        try:
            if self._client is not None:
                response = await self._client.request(method, url, **request_kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, **request_kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Remote call timed out", method=method, url=url)
            raise RemoteCallError(f"Request to {url} timed out", timed_out=True) from e
        except httpx.RequestError as e:
            logger.warning("Remote call failed", method=method, url=url, error=str(e))
            raise RemoteCallError(f"Could not reach {url}: {e}") from e

        return RemoteResponse(
            status_code=response.status_code,
            body=decode_body(response.content),
            text=response.text[:500],
        )
