"""UpdateSource: one ``getUpdates`` long-poll call."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError

from sakura_tg.api.base import Transport
from sakura_tg.errors import SourceError, TransportError
from sakura_tg.types import Update

logger = structlog.get_logger()

_UPDATES = TypeAdapter(list[Update])


class UpdateSource:
    """Fetches batches of updates through an injected transport."""

    method = "getUpdates"

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    @staticmethod
    def build_params(
        offset: int,
        allowed_updates: Iterable[str] | None = None,
        timeout: int | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"offset": offset}
        if allowed_updates is not None:
            params["allowed_updates"] = [str(u) for u in allowed_updates]
        if timeout is not None:
            params["timeout"] = timeout
        if limit is not None:
            params["limit"] = limit
        return params

    async def fetch(
        self,
        offset: int,
        allowed_updates: Iterable[str] | None = None,
        timeout: int | None = None,
        limit: int | None = None,
    ) -> list[Update]:
        """Return the updates at or after *offset*, sorted by ``update_id``.

        Blocks up to *timeout* seconds server-side when nothing is pending.
        """
        params = self.build_params(offset, allowed_updates, timeout, limit)
        try:
            response = await self._transport.call(self.method, params)
        except TransportError as exc:
            raise SourceError(str(exc), error_code=exc.status_code) from exc

        if not response.ok:
            raise SourceError(
                response.description or "getUpdates returned ok=false",
                error_code=response.error_code,
            )
        if not isinstance(response.result, list):
            raise SourceError(
                f"getUpdates returned {type(response.result).__name__}, expected a list"
            )
        try:
            updates = _UPDATES.validate_python(response.result)
        except ValidationError as exc:
            raise SourceError(f"getUpdates returned malformed updates: {exc}") from exc

        updates.sort(key=lambda u: u.update_id)
        if updates:
            logger.debug(
                "update_source.batch",
                offset=offset,
                count=len(updates),
                first=updates[0].update_id,
                last=updates[-1].update_id,
            )
        return updates
