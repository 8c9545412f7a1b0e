"""
Module HTTP Client

Handles HTTP calls to the backend modules (intent, character, scene, item,
storyteller).
"""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from ...chains.models import ModuleType
from ...exceptions import StepExecutionError

logger = logging.getLogger(__name__)


class ModuleHTTPClient:
    """HTTP client holding one httpx.AsyncClient per target module"""

    def __init__(
        self,
        base_urls: Mapping[str, str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_urls: Base URL per module name
            timeout: Default request timeout in seconds
            transport: Optional transport (tests pass an httpx.MockTransport)
        """
        self.timeout = timeout
        self.base_urls: Dict[ModuleType, str] = {}
        self.clients: Dict[ModuleType, httpx.AsyncClient] = {}

        for module in ModuleType:
            base_url = base_urls.get(module.value)
            if not base_url:
                continue
            self.base_urls[module] = base_url.rstrip("/")
            self.clients[module] = httpx.AsyncClient(
                base_url=self.base_urls[module],
                timeout=timeout,
                headers={"Content-Type": "application/json"},
                transport=transport,
            )

        logger.info(f"Module clients initialized: {', '.join(m.value for m in self.clients)}")

    def base_url(self, module: ModuleType) -> str:
        """Base URL of a module"""
        module = ModuleType(module)
        if module not in self.base_urls:
            raise StepExecutionError(f"Module not configured: {module.value}")
        return self.base_urls[module]

    async def request(
        self,
        module: ModuleType,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """
        Send a request to a module

        Args:
            module: Target module
            method: HTTP method
            path: Path relative to the module base URL
            params: Query parameters
            json: JSON body
            headers: Extra headers
            timeout: Timeout in seconds (defaults to the client timeout)

        Returns:
            The httpx response (any status code)

        Raises:
            StepExecutionError: If the module has no configured base URL
            httpx.HTTPError: On transport failures and timeouts
        """
        module = ModuleType(module)
        client = self.clients.get(module)
        if client is None:
            raise StepExecutionError(f"Module not configured: {module.value}")

        logger.debug(f"{method} {self.base_urls[module]}{path}")
        return await client.request(
            method,
            path,
            params=params or None,
            json=json,
            headers=headers or None,
            timeout=timeout if timeout is not None else self.timeout,
        )

    async def health_check(self) -> Dict[str, bool]:
        """
        Call GET /health on every module

        Returns:
            Module name -> healthy flag
        """
        results = {}
        for module, client in self.clients.items():
            try:
                response = await client.get("/health", timeout=5.0)
                results[module.value] = response.status_code == 200
            except httpx.HTTPError:
                results[module.value] = False
        return results

    async def close(self):
        """Close all HTTP clients"""
        for client in self.clients.values():
            await client.aclose()
