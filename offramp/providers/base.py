from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is configured to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class JsonRpcError(Exception):
    """JSON-RPC endpoint returned an error object or an unusable response."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class JsonRpcProvider(Provider):
    """Shared JSON-RPC plumbing for node, bundler and paymaster endpoints."""

    error_class = JsonRpcError

    def __init__(
        self,
        rpc_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    async def ready(self) -> bool:
        return bool(self.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": f"{self.name} not configured"}

        try:
            result = await self._rpc_call("eth_chainId", [])
            return {"status": "healthy", "chainId": result}
        except Exception as exc:
            return {"status": "error", "reason": str(exc)}

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        if not self._client or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)

        self._request_id += 1
        try:
            response = await self._client.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise self.error_class(f"{self.name} {method} failed: {exc}") from exc
        except ValueError as exc:
            raise self.error_class(f"{self.name} {method} returned invalid JSON") from exc

        error = payload.get("error") if isinstance(payload, dict) else None
        if error:
            if isinstance(error, dict):
                raise self.error_class(
                    str(error.get("message") or error),
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise self.error_class(str(error))
        return payload.get("result")

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
