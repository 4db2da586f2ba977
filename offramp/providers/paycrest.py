"""Async client for the settlement provider's sender API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote as urlquote

import httpx

from .base import Provider
from ..config import Settings, settings as default_settings


class SettlementProviderError(Exception):
    """Settlement provider returned an error or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PaycrestProvider(Provider):
    """Thin wrapper around the rates, currencies, institutions,
    verify-account and orders endpoints.

    One instance is created per process by the service container and shared
    by every service that talks to the provider.
    """

    name = "paycrest"

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        config = config or default_settings
        self.base_url = (base_url or config.paycrest_api_url).rstrip("/")
        self.api_key = config.paycrest_api_key
        self.api_secret = config.paycrest_api_secret
        self.timeout_s = config.request_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self, *, authenticated: bool = False) -> Dict[str, str]:
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
            "API-Key": self.api_key,
        }
        if authenticated and self.api_secret:
            headers["API-Secret"] = self.api_secret
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = False,
    ) -> Any:
        client = self._get_client()
        try:
            response = await client.request(
                method,
                path,
                json=json,
                params=params,
                headers=self._headers(authenticated=authenticated),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text or exc.response.reason_phrase
            raise SettlementProviderError(
                f"{method} {path} failed: {exc.response.status_code} {detail}",
                status_code=exc.response.status_code,
                body=detail,
            ) from exc
        except httpx.RequestError as exc:
            raise SettlementProviderError(f"{method} {path} failed: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise SettlementProviderError(f"{method} {path} returned invalid JSON") from exc

    @staticmethod
    def _data(payload: Any) -> Any:
        if isinstance(payload, dict) and "data" in payload:
            return payload["data"]
        return payload

    async def ready(self) -> bool:
        return bool(self.base_url and self.api_key)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Settlement provider credentials missing"}
        try:
            currencies = await self.get_currencies()
            return {"status": "healthy", "currencies": len(currencies)}
        except SettlementProviderError as exc:
            return {"status": "error", "reason": str(exc)}

    async def get_rate(self, token: str, amount: str, currency: str, network: str) -> str:
        """Exchange rate for ``amount`` of ``token`` into ``currency``, as the raw string."""

        path = f"/v1/rates/{urlquote(token)}/{urlquote(str(amount))}/{urlquote(currency)}"
        payload = await self._request("GET", path, params={"network": network} if network else None)
        data = self._data(payload)
        if isinstance(data, dict):
            data = data.get("rate")
        if data is None and isinstance(payload, dict):
            data = payload.get("rate")
        if data in (None, ""):
            raise SettlementProviderError("Rate response did not include a rate", body=payload)
        return str(data)

    async def get_currencies(self) -> List[Dict[str, Any]]:
        data = self._data(await self._request("GET", "/v1/currencies"))
        return list(data or [])

    async def get_institutions(self, currency: str) -> List[Dict[str, Any]]:
        data = self._data(await self._request("GET", f"/v1/institutions/{urlquote(currency)}"))
        return list(data or [])

    async def verify_account(self, institution: str, account_identifier: str) -> Dict[str, Any]:
        payload = await self._request(
            "POST",
            "/v1/verify-account",
            json={"institution": institution, "accountIdentifier": account_identifier},
            authenticated=True,
        )
        if isinstance(payload, dict) and str(payload.get("status", "success")).lower() not in ("success", "ok"):
            raise SettlementProviderError(
                str(payload.get("message") or "Account verification rejected"),
                body=payload,
            )
        data = self._data(payload)
        return data if isinstance(data, dict) else {"accountName": data}

    async def create_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        data = self._data(await self._request("POST", "/v1/orders", json=order, authenticated=True))
        if not isinstance(data, dict):
            raise SettlementProviderError("Order response did not include order data", body=data)
        return data

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        data = self._data(
            await self._request("GET", f"/v1/orders/{urlquote(order_id)}", authenticated=True)
        )
        if not isinstance(data, dict):
            raise SettlementProviderError("Order status response did not include order data", body=data)
        return data

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
