"""Shared fakes for the polling unit tests."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from sakura_tg.api.base import ApiResponse

Scripted = (
    ApiResponse | Exception | Callable[[], ApiResponse | Awaitable[ApiResponse]]
)


class ScriptedTransport:
    """In-memory Transport returning a scripted sequence of responses.

    A callable item is invoked (and awaited when it returns an awaitable).
    Once the script is exhausted every call returns an empty batch.
    """

    def __init__(self, script: list[Scripted] | None = None) -> None:
        self._script = list(script or [])
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def offsets(self) -> list[int]:
        return [params["offset"] for _, params in self.calls]

    async def call(
        self, method: str, params: dict[str, Any] | None = None
    ) -> ApiResponse:
        self.calls.append((method, dict(params or {})))
        item: Scripted = (
            self._script.pop(0) if self._script else ApiResponse(ok=True, result=[])
        )
        if callable(item):
            item = item()
            if inspect.isawaitable(item):
                item = await item
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def make_transport() -> Callable[..., ScriptedTransport]:
    def _make(*script: Scripted) -> ScriptedTransport:
        return ScriptedTransport(list(script))

    return _make
