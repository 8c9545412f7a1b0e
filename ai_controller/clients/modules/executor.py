"""
Step Executor

Turns a module_call step into an HTTP request and normalizes the outcome into
a StepResult. Every failure (non-2xx, timeout, unreachable module) comes back
as a failed StepResult; nothing is raised to the engine.
"""

import logging
import re
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import httpx

from ...chains.context import ExecutionContext
from ...chains.models import ChainStep, HttpMethod, StepRequest, StepResult, StepType
from ...chains.variables import VariableResolver, to_text
from ...exceptions import StepExecutionError
from .http import ModuleHTTPClient

logger = logging.getLogger(__name__)

PATH_PARAM_PATTERN = re.compile(r":([a-zA-Z_][a-zA-Z0-9_]*)")
BODY_METHODS = (HttpMethod.POST, HttpMethod.PATCH, HttpMethod.PUT)


def build_path(endpoint: str, params: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Fill :name placeholders from params

    Args:
        endpoint: Endpoint path, e.g. "/character/:userId/:name"
        params: Resolved step params

    Returns:
        Tuple of (path, remaining query params)

    Example:
        >>> build_path("/character/:userId/:name", {"userId": "u1", "name": "Thorin", "full": True})
        ('/character/u1/Thorin', {'full': True})
    """
    used = set()

    def replace(match):
        name = match.group(1)
        if params.get(name) is None:
            return match.group(0)
        used.add(name)
        return quote(to_text(params[name]), safe="")

    path = PATH_PARAM_PATTERN.sub(replace, endpoint)
    query = {k: v for k, v in params.items() if k not in used}
    return path, query


class StepExecutor:
    """Executes module_call steps against the configured modules"""

    def __init__(
        self,
        http_client: ModuleHTTPClient,
        resolver: Optional[VariableResolver] = None,
        default_timeout: float = 10.0,
    ):
        self.http_client = http_client
        self.resolver = resolver or VariableResolver()
        self.default_timeout = default_timeout

    async def execute(self, step: ChainStep, context: ExecutionContext) -> StepResult:
        """
        Resolve and send one step's request

        Args:
            step: module_call step
            context: Execution context (read only here)

        Returns:
            StepResult with success, status, response body, duration and error
        """
        started = time.monotonic()
        result = StepResult(
            step_id=step.id,
            step_name=step.name,
            step_type=StepType.MODULE_CALL,
            module=step.module,
            endpoint=step.endpoint,
            method=step.method,
            success=False,
        )

        try:
            endpoint = self.resolver.resolve(step.endpoint, context)
            if not isinstance(endpoint, str):
                endpoint = to_text(endpoint)
            params = self.resolver.resolve(step.params or {}, context)
            body = self.resolver.resolve(step.body, context) if step.body is not None else None
            headers = {
                key: to_text(value)
                for key, value in self.resolver.resolve(step.headers or {}, context).items()
            }

            path, query = build_path(endpoint, params)
            query = {
                key: to_text(value) if isinstance(value, (dict, bool)) or value is None else value
                for key, value in query.items()
            }
            send_body = body if step.method in BODY_METHODS else None
            timeout = step.timeout / 1000.0 if step.timeout else self.default_timeout

            result.request = StepRequest(
                url=self._full_url(step, path, query),
                params=params or None,
                body=send_body,
                headers=headers or None,
            )

            response = await self.http_client.request(
                step.module,
                step.method.value,
                path,
                params=query,
                json=send_body,
                headers=headers,
                timeout=timeout,
            )

        except httpx.TimeoutException:
            result.error = f"Timeout after {timeout}s calling {step.module.value} module"
        except httpx.HTTPError as e:
            result.error = f"No response from {step.module.value} module: {e}"
        except (StepExecutionError, ValueError) as e:
            result.error = f"Request error for {step.module.value}: {e}"
        except Exception as e:
            logger.error(f"Unexpected error executing step {step.id}: {e}", exc_info=True)
            result.error = f"Unexpected error in step {step.id}: {e}"
        else:
            result.status = response.status_code
            result.response = self._parse_body(response)
            result.success = 200 <= response.status_code < 300
            if not result.success:
                result.error = self._error_message(response, result.response)

        result.duration_ms = int((time.monotonic() - started) * 1000)

        if result.success:
            logger.info(f"Step {step.id}: {step.method.value} {step.endpoint} -> {result.status} ({result.duration_ms}ms)")
        else:
            logger.warning(f"Step {step.id} failed: {result.error}")

        return result

    def _full_url(self, step: ChainStep, path: str, query: Dict[str, Any]) -> str:
        try:
            url = httpx.URL(self.http_client.base_url(step.module) + path)
        except (StepExecutionError, ValueError):
            return path
        return str(url.copy_merge_params(query)) if query else str(url)

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _error_message(response: httpx.Response, body: Any) -> str:
        message = f"HTTP {response.status_code}: {response.reason_phrase}"
        if isinstance(body, dict):
            detail = body.get("error") or body.get("message") or body.get("detail")
            if isinstance(detail, str) and detail:
                message = f"{message} - {detail}"
        return message
