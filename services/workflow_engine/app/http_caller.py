"""Outbound HTTP calls for workflow steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import httpx

from .errors import StepTransportFailure

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class HttpResponse:
    """Outcome of a completed HTTP exchange, whatever its status code."""

    status_code: int
    text: str


class HttpCaller:
    """Thin wrapper over a shared ``httpx.AsyncClient``.

    Any status code counts as a completed exchange. Only transport problems
    (connect errors, timeouts, protocol violations, unusable URLs) are raised,
    as :class:`StepTransportFailure`.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=False,
            transport=transport,
        )

    async def call(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: str | None = None,
    ) -> HttpResponse:
        try:
            response = await self._client.request(
                method,
                url,
                headers=dict(headers),
                content=body.encode("utf-8") if body is not None else None,
            )
        except httpx.TimeoutException as exc:
            raise StepTransportFailure(
                f"{method} {url} timed out after {self.timeout:g}s"
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            detail = str(exc) or exc.__class__.__name__
            raise StepTransportFailure(f"{method} {url} failed: {detail}") from exc
        except ValueError as exc:
            # Raised while encoding the request, e.g. non-ASCII header values.
            raise StepTransportFailure(
                f"{method} {url} could not be sent: {exc}"
            ) from exc
        return HttpResponse(status_code=response.status_code, text=response.text)

    async def aclose(self) -> None:
        await self._client.aclose()
