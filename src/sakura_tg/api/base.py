"""Transport protocol consumed by the update source.

Anything that can exchange a Bot API method call for a response envelope
satisfies :class:`Transport`; :class:`~sakura_tg.api.client.BotApiClient` is the
HTTP implementation, tests use in-memory stubs.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


class ApiResponse(BaseModel):
    """Bot API response envelope."""

    model_config = ConfigDict(extra="allow")

    ok: bool
    result: Any = None
    description: str | None = None
    error_code: int | None = None


@runtime_checkable
class Transport(Protocol):
    """Protocol every Bot API transport must satisfy."""

    async def call(
        self, method: str, params: dict[str, Any] | None = None
    ) -> ApiResponse:
        """Invoke *method* with *params*; raise TransportError on failure."""
        ...
