"""
HTTP-клиент API леджера и каталога.

Аутентификация трёхуровневая, клиент только подставляет заголовки:
  - tier1: сервисная роль — `Authorization: Bearer` + `X-Anonymous-Key`;
  - tier2: анонимный авторизованный пользователь — ключ + `X-Telegram-Init-Data`;
  - tier3: анонимное чтение — только ключ.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Literal

import httpx

from budgetflow.config import settings
from budgetflow.services.errors import ApiError, InvalidResponse, NetworkError, RequestTimeout, ServiceNotConfigured

logger = logging.getLogger(__name__)

AuthTier = Literal["tier1", "tier2", "tier3"]


class LedgerApiClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        token: str | None = None,
        init_data: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url if base_url is not None else settings.LEDGER_API_URL or "").rstrip("/")
        self._api_key = api_key if api_key is not None else settings.SYNC_API_KEY
        self._token = token if token is not None else settings.LEDGER_TOKEN
        self._init_data = init_data if init_data is not None else settings.HOST_INIT_DATA
        self._timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url and self._api_key)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self, tier: AuthTier) -> dict[str, str]:
        if not self._api_key:
            raise ServiceNotConfigured(f"Sync API key not configured for {tier} authentication")
        headers = {
            "X-Anonymous-Key": self._api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if tier == "tier1":
            if not self._token:
                raise ServiceNotConfigured("Ledger token required for tier1 authentication")
            headers["Authorization"] = f"Bearer {self._token}"
        elif tier == "tier2":
            if self._init_data:
                headers["X-Telegram-Init-Data"] = self._init_data
        elif tier != "tier3":
            raise ValueError(f"Unknown auth tier: {tier}")
        return headers

    def _redact(self, text: str) -> str:
        for secret, mask in ((self._api_key, "***SYNC_KEY***"), (self._token, "***LEDGER_TOKEN***")):
            if secret:
                text = text.replace(secret, mask)
        return text

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        auth: AuthTier = "tier2",
        timeout: float | None = None,
    ) -> Any:
        """Выполняет запрос и возвращает разобранный JSON (или {} для пустого тела).

        Raises:
            ServiceNotConfigured: Нет базового URL или ключа.
            RequestTimeout: Истёк таймаут запроса.
            NetworkError: Сетевой сбой без HTTP-ответа.
            ApiError: Статус ответа вне 2xx.
            InvalidResponse: Тело ответа не JSON.
        """
        if not self.is_configured:
            raise ServiceNotConfigured()
        timeout = timeout if timeout is not None else self._timeout
        headers = self._headers(auth)
        url = f"{self._base_url}{path}"
        logger.debug("[API] %s %s auth=%s body=%s", method, path, auth, json_body is not None)

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                resp = await client.request(method, url, params=params, json=json_body, headers=headers)
        except httpx.TimeoutException:
            logger.warning(f"[API] {method} {path} timed out after {timeout}s")
            raise RequestTimeout(timeout)
        except httpx.HTTPError as e:
            message = self._redact(str(e))
            logger.warning(f"[API] {method} {path} network error: {message}")
            raise NetworkError(message) from e

        if resp.status_code < 200 or resp.status_code >= 300:
            body = resp.text
            logger.warning(
                f"[API] {method} {path} failed: {resp.status_code} {resp.reason_phrase} "
                f"{self._redact(body)[:500]}"
            )
            raise ApiError(resp.status_code, resp.reason_phrase, body)

        if not resp.content:
            return {}
        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise InvalidResponse(f"Invalid JSON from {path}: {e}") from e

    async def get(self, path: str, params: dict[str, Any] | None = None, auth: AuthTier = "tier2") -> Any:
        return await self.request("GET", path, params=params, auth=auth)

    async def post(self, path: str, body: Any = None, auth: AuthTier = "tier2") -> Any:
        return await self.request("POST", path, json_body=body, auth=auth)

    async def put(self, path: str, body: Any = None, auth: AuthTier = "tier2") -> Any:
        return await self.request("PUT", path, json_body=body, auth=auth)

    async def delete(self, path: str, auth: AuthTier = "tier2") -> Any:
        return await self.request("DELETE", path, auth=auth)
