"""Update handler contract: validation and binding.

A handler is any callable taking exactly one positional parameter annotated
with a structured type:

- a *record*: a pydantic model (``Update`` itself included) or a dataclass;
- a *map*: ``dict``, a ``Mapping`` ABC, a parametrised ``dict[...]`` /
  ``Mapping[...]`` or a ``TypedDict``.

The check runs once, when the poller is built. Each dispatched update is then
converted to the declared type inside the worker that runs the handler.

An optional error hook ``on_error(update, exc)`` is checked the same way, once,
when the poller is built.
"""

from __future__ import annotations

import dataclasses
import inspect
from collections.abc import Callable, Mapping
from enum import StrEnum
from types import UnionType
from typing import Annotated, Any, Union, get_args, get_origin, is_typeddict

from pydantic import BaseModel, TypeAdapter
from pydantic.errors import PydanticUserError

from sakura_tg.errors import (
    HandlerContractError,
    InvalidArity,
    UndeclaredParameterType,
    UnsupportedParameterType,
)
from sakura_tg.polling.pool import is_async_callable
from sakura_tg.types import Update

_POSITIONAL = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


class ParameterKind(StrEnum):
    RECORD = "record"
    MAP = "map"


@dataclasses.dataclass(frozen=True, slots=True)
class HandlerDescriptor:
    """Accepted shape of a validated handler."""

    handler: Callable[..., Any]
    parameter: str
    annotation: Any
    kind: ParameterKind
    is_coroutine: bool
    adapter: TypeAdapter[Any] | None = dataclasses.field(
        default=None, repr=False, compare=False
    )

    def coerce(self, update: Update) -> Any:
        if self.adapter is None:
            return update
        return self.adapter.validate_python(update.payload)

    def bind(self, update: Update) -> Callable[[], Any]:
        """Return a zero-argument unit of work invoking the handler with *update*."""
        if self.is_coroutine:

            async def _invoke_async() -> None:
                await self.handler(self.coerce(update))

            return _invoke_async

        def _invoke() -> None:
            self.handler(self.coerce(update))

        return _invoke


def _describe(handler: Any) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


def _classify(annotation: Any, name: str) -> ParameterKind:
    if get_origin(annotation) is Annotated:
        annotation = get_args(annotation)[0]

    if annotation is inspect.Parameter.empty or annotation is Any:
        raise UndeclaredParameterType(
            f"Handler {name} must annotate its parameter with a record or map type"
        )
    if isinstance(annotation, str):
        raise UndeclaredParameterType(
            f"Handler {name} has an unresolvable annotation {annotation!r}"
        )

    origin = get_origin(annotation)
    if origin is not None:
        # dict[str, Any], Mapping[str, Any], ...
        if isinstance(origin, type) and issubclass(origin, Mapping):
            return ParameterKind.MAP
    elif is_typeddict(annotation):
        return ParameterKind.MAP
    elif isinstance(annotation, type):
        if issubclass(annotation, BaseModel) or dataclasses.is_dataclass(annotation):
            return ParameterKind.RECORD
        if issubclass(annotation, Mapping):
            return ParameterKind.MAP

    raise UnsupportedParameterType(
        f"Handler {name} parameter must be a record or map type, "
        f"{annotation!r} given"
    )


def validate_handler(handler: Any) -> HandlerDescriptor:
    """Check *handler* against the handler contract.

    Raises InvalidArity, UndeclaredParameterType or UnsupportedParameterType.
    """
    if not callable(handler):
        raise HandlerContractError(
            f"Handler must be callable, {type(handler).__name__} given"
        )
    name = _describe(handler)

    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError) as exc:
        raise HandlerContractError(f"Cannot inspect handler {name}: {exc}") from exc

    params = list(signature.parameters.values())
    if len(params) != 1:
        raise InvalidArity(
            f"Handler {name} must accept exactly one parameter, {len(params)} given"
        )
    param = params[0]
    if param.kind not in _POSITIONAL:
        raise InvalidArity(
            f"Handler {name} parameter '{param.name}' must be positional, "
            f"{param.kind.description} given"
        )

    try:
        resolved = inspect.signature(handler, eval_str=True)
    except (NameError, AttributeError, SyntaxError, TypeError) as exc:
        raise UndeclaredParameterType(
            f"Handler {name} has an unresolvable annotation: {exc}"
        ) from exc
    annotation = resolved.parameters[param.name].annotation

    kind = _classify(annotation, name)

    adapter: TypeAdapter[Any] | None = None
    if annotation is not Update:
        try:
            adapter = TypeAdapter(annotation)
        except PydanticUserError as exc:
            raise UnsupportedParameterType(
                f"Handler {name} parameter type {annotation!r} cannot be built "
                f"from an update: {exc}"
            ) from exc

    return HandlerDescriptor(
        handler=handler,
        parameter=param.name,
        annotation=annotation,
        kind=kind,
        is_coroutine=is_async_callable(handler),
        adapter=adapter,
    )


def _is_exception_annotation(annotation: Any) -> bool:
    if get_origin(annotation) in (Union, UnionType):
        return all(_is_exception_annotation(arg) for arg in get_args(annotation))
    return isinstance(annotation, type) and issubclass(annotation, BaseException)


def validate_error_hook(hook: Any) -> Callable[[Update, BaseException], Any]:
    """Check an ``on_error(update, exc)`` callback and return it.

    The hook takes exactly two positional parameters. The first is left
    unchecked; the second, when annotated, must name an exception class (or
    a union of them). Sync or coroutine functions are both accepted.
    """
    if not callable(hook):
        raise HandlerContractError(
            f"Error hook must be callable, {type(hook).__name__} given"
        )
    name = _describe(hook)

    try:
        signature = inspect.signature(hook)
    except (TypeError, ValueError) as exc:
        raise HandlerContractError(f"Cannot inspect error hook {name}: {exc}") from exc

    params = list(signature.parameters.values())
    if len(params) != 2 or any(p.kind not in _POSITIONAL for p in params):
        raise InvalidArity(
            f"Error hook {name} must accept exactly two positional parameters "
            f"(update, exception), got {signature}"
        )

    try:
        resolved = inspect.signature(hook, eval_str=True)
    except (NameError, AttributeError, SyntaxError, TypeError) as exc:
        raise UndeclaredParameterType(
            f"Error hook {name} has an unresolvable annotation: {exc}"
        ) from exc
    annotation = resolved.parameters[params[1].name].annotation
    if get_origin(annotation) is Annotated:
        annotation = get_args(annotation)[0]

    if annotation is inspect.Parameter.empty or annotation is Any:
        return hook
    if not _is_exception_annotation(annotation):
        raise UnsupportedParameterType(
            f"Error hook {name} must take an exception as its second parameter, "
            f"{annotation!r} given"
        )
    return hook
