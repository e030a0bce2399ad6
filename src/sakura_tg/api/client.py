"""HTTP transport for the Telegram Bot API."""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from sakura_tg.api.base import ApiResponse
from sakura_tg.config.models import ApiConfig
from sakura_tg.errors import BotAuthError, TransportError
from sakura_tg.types import BotUser

logger = structlog.get_logger()


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, httpx.TransportError)


class BotApiClient:
    """Thin async wrapper around ``{base_url}/bot<token>/<method>``."""

    def __init__(self, config: ApiConfig) -> None:
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers={"User-Agent": config.user_agent},
            timeout=httpx.Timeout(config.request_timeout_seconds),
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> BotApiClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _path(self, method: str) -> str:
        return f"/bot{self._config.token.get_secret_value()}/{method}"

    def _timeout_for(self, params: dict[str, Any]) -> httpx.Timeout:
        """Long-poll calls hold the connection open for ``timeout`` seconds."""
        base = self._config.request_timeout_seconds
        long_poll = params.get("timeout") or 0
        return httpx.Timeout(base, read=base + float(long_poll))

    async def call(
        self, method: str, params: dict[str, Any] | None = None
    ) -> ApiResponse:
        """POST *params* as JSON to *method* and return the response envelope.

        Network errors, 429 and 5xx responses are retried. Other non-2xx
        responses are returned as ``ok=False`` envelopes so callers can read
        the API's ``description``.
        """
        payload = params or {}
        timeout = self._timeout_for(payload)
        retry_cfg = self._config.retry

        @retry(
            stop=stop_after_attempt(retry_cfg.max_attempts),
            wait=wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                jitter=retry_cfg.initial_wait_seconds if retry_cfg.jitter else 0,
            ),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        async def _send() -> httpx.Response:
            response = await self._client.post(
                self._path(method), json=payload, timeout=timeout
            )
            if response.status_code == 429 or response.status_code >= 500:
                response.raise_for_status()
            return response

        try:
            response = await _send()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("bot_api.request_failed", method=method, status=status)
            raise TransportError(
                f"{method} failed with HTTP {status}", status_code=status
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("bot_api.request_failed", method=method, error=str(exc))
            raise TransportError(f"{method} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError(
                f"{method} returned a non-JSON body (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc
        try:
            envelope = ApiResponse.model_validate(body)
        except ValidationError as exc:
            raise TransportError(
                f"{method} returned a malformed envelope",
                status_code=response.status_code,
            ) from exc

        logger.debug("bot_api.call", method=method, ok=envelope.ok)
        return envelope

    async def get_me(self) -> BotUser:
        """Validate the token and return the bot's own user object."""
        response = await self.call("getMe")
        if not response.ok:
            raise BotAuthError(
                response.description or "The token was rejected by the Bot API",
                status_code=response.error_code,
            )
        me = BotUser.model_validate(response.result)
        logger.info("bot_api.authenticated", bot_id=me.id, username=me.username)
        return me
