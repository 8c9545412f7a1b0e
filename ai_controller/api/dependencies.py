"""
Dependencies giving routes access to the services built at startup
"""

from fastapi import Request

from ..chains.engine import ExecutionEngine
from ..chains.interpreter import ChainInterpreter
from ..clients.modules.http import ModuleHTTPClient
from ..config import ControllerSettings
from ..database.store import ChainStore


def get_settings(request: Request) -> ControllerSettings:
    return request.app.state.settings


def get_store(request: Request) -> ChainStore:
    return request.app.state.store


def get_engine(request: Request) -> ExecutionEngine:
    return request.app.state.engine


def get_interpreter(request: Request) -> ChainInterpreter:
    return request.app.state.interpreter


def get_http_client(request: Request) -> ModuleHTTPClient:
    return request.app.state.http_client
