"""Transport executor: one outbound HTTP call with a hard timeout.

Every retry attempt made by a source adapter goes through
:meth:`TransportExecutor.execute`, which races the call against a timer and
cancels the in-flight request when the timer fires first.  The executor
never raises for network problems; it reports exactly one
:class:`Outcome` -- success, failure (with an :class:`ErrorKind`), or
timeout.

Responses are read in full before returning, so the pooled connection is
released on the success path as well as on failure and cancellation.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import httpx
import orjson
import structlog

logger = structlog.get_logger(__name__)

_USER_AGENT = "CivicVerify/1.0 (Citizen Claim Verification)"


# ---------------------------------------------------------------------------
# Request / outcome types
# ---------------------------------------------------------------------------


class OutcomeKind(StrEnum):
    __slots__ = ()

    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class ErrorKind(StrEnum):
    """Classification of a failed attempt."""

    __slots__ = ()

    CONNECTION = "connection"
    SERVER = "server"
    RATE_LIMITED = "rate_limited"
    AUTH = "auth"
    CLIENT = "client"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True, slots=True)
class TransportRequest:
    """A fully-built outbound request, immutable so retries reuse it by value."""

    method: str
    url: str
    params: Mapping[str, str] | None = None
    headers: Mapping[str, str] | None = None
    data: Mapping[str, str] | None = None

    def describe(self) -> str:
        return f"{self.method} {self.url}"


@dataclass(frozen=True, slots=True)
class RawResponse:
    status_code: int
    text: str
    content_type: str = ""

    def json(self) -> Any:
        """Decode the body as JSON; raises ``orjson.JSONDecodeError`` on bad input."""
        return orjson.loads(self.text)


@dataclass(frozen=True, slots=True)
class Outcome:
    kind: OutcomeKind
    raw: RawResponse | None = None
    error: ErrorKind | None = None
    status_code: int | None = None
    detail: str = field(default="")

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def timed_out(self) -> bool:
        return self.kind is OutcomeKind.TIMED_OUT

    @classmethod
    def success(cls, raw: RawResponse) -> Outcome:
        return cls(kind=OutcomeKind.SUCCESS, raw=raw, status_code=raw.status_code)

    @classmethod
    def failed(
        cls,
        error: ErrorKind,
        detail: str = "",
        status_code: int | None = None,
    ) -> Outcome:
        return cls(
            kind=OutcomeKind.FAILED,
            error=error,
            status_code=status_code,
            detail=detail,
        )

    @classmethod
    def timeout(cls, detail: str = "") -> Outcome:
        return cls(kind=OutcomeKind.TIMED_OUT, detail=detail)

    def describe(self) -> str:
        if self.ok:
            return f"HTTP {self.status_code}"
        if self.timed_out:
            return f"timed out ({self.detail})" if self.detail else "timed out"
        status = f" HTTP {self.status_code}" if self.status_code is not None else ""
        detail = f": {self.detail}" if self.detail else ""
        return f"{self.error}{status}{detail}"


def classify_status(status_code: int) -> ErrorKind | None:
    """Map a non-2xx HTTP status to an :class:`ErrorKind` (``None`` for 2xx)."""
    if 200 <= status_code < 300:
        return None
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return ErrorKind.AUTH
    if status_code >= 500:
        return ErrorKind.SERVER
    return ErrorKind.CLIENT


# ---------------------------------------------------------------------------
# TransportExecutor
# ---------------------------------------------------------------------------


class TransportExecutor:
    """Issues single HTTP calls on a shared :class:`httpx.AsyncClient`.

    Parameters
    ----------
    client:
        Optional pre-built client (tests pass one wired to
        ``httpx.MockTransport``).  When omitted, a pooled client is created
        and owned by the executor.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": _USER_AGENT},
            follow_redirects=True,
            # Per-attempt deadlines are enforced by ``execute``.
            timeout=None,
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=5,
            ),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client if the executor created it."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, request: TransportRequest, timeout: float) -> Outcome:
        """Issue *request*, giving up after *timeout* seconds.

        Returns
        -------
        Outcome
            ``success`` for 2xx responses, ``failed`` for transport errors
            and non-2xx statuses, ``timed_out`` when the timer fires first.
        """
        try:
            response = await asyncio.wait_for(self._send(request), timeout=timeout)
        except (TimeoutError, httpx.TimeoutException):
            logger.warning(
                "transport.timed_out",
                request=request.describe(),
                timeout_s=timeout,
            )
            return Outcome.timeout(f"no response within {timeout:g}s")
        except httpx.TransportError as exc:
            logger.warning(
                "transport.connection_error",
                request=request.describe(),
                error=str(exc) or type(exc).__name__,
            )
            return Outcome.failed(ErrorKind.CONNECTION, str(exc) or type(exc).__name__)
        except Exception as exc:
            logger.warning(
                "transport.unexpected_error",
                request=request.describe(),
                exc_info=True,
            )
            return Outcome.failed(ErrorKind.UNEXPECTED, str(exc) or type(exc).__name__)

        raw = RawResponse(
            status_code=response.status_code,
            text=response.text,
            content_type=response.headers.get("content-type", ""),
        )
        error = classify_status(response.status_code)
        if error is None:
            return Outcome.success(raw)

        logger.warning(
            "transport.http_error",
            request=request.describe(),
            status=response.status_code,
            error=error,
        )
        return Outcome.failed(error, raw.text[:200], status_code=response.status_code)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _send(self, request: TransportRequest) -> httpx.Response:
        # ``request`` (not ``stream``) reads the whole body before returning.
        return await self._client.request(
            request.method,
            request.url,
            params=dict(request.params) if request.params else None,
            headers=dict(request.headers) if request.headers else None,
            data=dict(request.data) if request.data else None,
        )
