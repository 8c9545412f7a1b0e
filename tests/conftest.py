"""
Shared fixtures: a programmable stand-in for the game modules, an in-memory
chain store and a wired execution engine.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from ai_controller.chains.engine import ExecutionEngine
from ai_controller.chains.models import ChainConfiguration
from ai_controller.clients.modules.executor import StepExecutor
from ai_controller.clients.modules.http import ModuleHTTPClient
from ai_controller.database.store import ChainStore

MODULE_URLS = {
    "intent": "http://intent.test",
    "character": "http://character.test",
    "scene": "http://scene.test",
    "item": "http://item.test",
    "storyteller": "http://storyteller.test",
}


@dataclass
class StubRoute:
    status: int = 200
    json: Any = None
    text: Optional[str] = None
    delay: float = 0.0
    handler: Optional[Callable[[httpx.Request], httpx.Response]] = None


class ModuleStub:
    """Answers module requests from registered routes and records every call"""

    def __init__(self):
        self.routes: Dict[tuple, StubRoute] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, module: str, method: str, path: str, **kwargs) -> "ModuleStub":
        self.routes[(module, method.upper(), path)] = StubRoute(**kwargs)
        return self

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        module = request.url.host.split(".")[0]
        self.calls.append({
            "module": module,
            "method": request.method,
            "path": request.url.path,
            "params": dict(request.url.params),
            "body": json.loads(request.content) if request.content else None,
            "headers": dict(request.headers),
        })

        route = self.routes.get((module, request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "Not found"})
        if route.delay:
            await asyncio.sleep(route.delay)
        if route.handler is not None:
            return route.handler(request)
        if route.text is not None:
            return httpx.Response(route.status, text=route.text)
        return httpx.Response(route.status, json=route.json)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls_to(self, module: str, path: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            c for c in self.calls
            if c["module"] == module and (path is None or c["path"] == path)
        ]


def make_chain(steps: List[Dict[str, Any]], user_id: str = "admin", name: str = "Test chain", **extra) -> ChainConfiguration:
    return ChainConfiguration.model_validate({"user_id": user_id, "name": name, "steps": steps, **extra})


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def stub():
    return ModuleStub()


@pytest.fixture
def http_client(stub):
    return ModuleHTTPClient(MODULE_URLS, timeout=5.0, transport=stub.transport())


@pytest.fixture
def store():
    store = ChainStore("sqlite://")
    yield store
    store.close()


@pytest.fixture
def engine(http_client, store):
    return ExecutionEngine(StepExecutor(http_client), store=store, max_jumps=5)
