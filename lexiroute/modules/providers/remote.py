"""
Remote API provider.

Talks to an HTTP capability service:

    POST {base_url}/{operation}   body: {"payload": {...}}
    ->   200 {"value": ...}
    GET  {base_url}/health        -> 200 when the service is up

HTTP failures are mapped onto the error taxonomy here so that nothing
httpx-specific leaves the provider.
"""

import logging
import os
from typing import Any, Dict, Optional

import httpx

from lexiroute.modules.api.models import Operation, ProviderDescriptor, ProviderKind
from lexiroute.modules.errors import (
    PermanentError,
    ProviderTimeoutError,
    TransientError,
    UnsupportedOperationError,
)
from lexiroute.modules.errors.errors import TRANSIENT_STATUS_CODES, UNSUPPORTED_STATUS_CODES

from .base import Provider

logger = logging.getLogger("lexiroute.providers.remote")


class RemoteApiProvider(Provider):
    """Provider backed by a remote HTTP API"""

    kind = ProviderKind.REMOTE_API

    def __init__(self, descriptor: ProviderDescriptor, client: Optional[httpx.AsyncClient] = None):
        super().__init__(descriptor)
        options = descriptor.options
        self.base_url = str(options.get("base_url", "")).rstrip("/")
        api_key_env = options.get("api_key_env")
        self.api_key = options.get("api_key") or (os.getenv(api_key_env) if api_key_env else None)
        self.request_timeout = float(options.get("request_timeout", 15.0))
        self.health_path = options.get("health_path", "/health")

        self._owns_client = client is None
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url, headers=headers, timeout=self.request_timeout
            )
        return self._client

    async def _invoke(self, operation: Operation, payload: Dict[str, Any]) -> Any:
        if not self.is_configured:
            raise PermanentError(f"{self.id} has no base_url configured", provider_id=self.id)

        try:
            response = await self._get_client().post(f"/{operation.value}", json={"payload": payload})
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"{self.id} request timeout", timeout=self.request_timeout, provider_id=self.id, cause=e
            ) from e
        except httpx.TransportError as e:
            raise TransientError(f"network error: {e}", provider_id=self.id, cause=e) from e

        self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError as e:
            raise PermanentError(f"{self.id} returned invalid JSON", provider_id=self.id, cause=e) from e

        if isinstance(data, dict) and "value" in data:
            return data["value"]
        return data

    def _raise_for_status(self, response: httpx.Response) -> None:
        status_code = response.status_code
        if status_code < 400:
            return

        detail = response.text[:200] if response.text else ""
        if status_code == 429:
            retry_after = response.headers.get("Retry-After")
            logger.warning(f"{self.id} rate limited (retry_after={retry_after})")
            raise TransientError(f"rate_limit: HTTP 429 {detail}".strip(), provider_id=self.id)
        if status_code in TRANSIENT_STATUS_CODES:
            raise TransientError(
                f"temporary_unavailable: HTTP {status_code} {detail}".strip(), provider_id=self.id
            )
        if status_code in UNSUPPORTED_STATUS_CODES:
            raise UnsupportedOperationError(f"HTTP {status_code}: operation not offered", provider_id=self.id)
        if status_code in (401, 403):
            raise PermanentError(f"HTTP {status_code}: invalid API key", provider_id=self.id)
        raise PermanentError(f"HTTP {status_code}: {detail}".strip(), provider_id=self.id)

    async def probe(self, operation: Operation) -> bool:
        if not self.descriptor.supports(operation) or not self.is_configured:
            return False
        try:
            response = await self._get_client().get(self.health_path)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"{self.id} health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
