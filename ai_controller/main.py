"""
FastAPI app for the AI Controller

Stores chains of module calls and executes them against the game modules.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import chains, executions, modules
from .chains.conditions import ConditionEvaluator
from .chains.engine import ExecutionEngine, PipelineRunner
from .chains.interpreter import ChainInterpreter
from .chains.variables import VariableResolver
from .clients.modules.executor import StepExecutor
from .clients.modules.http import ModuleHTTPClient
from .config import ControllerSettings
from .database.store import ChainStore
from .exceptions import ChainValidationError, PersistenceError

logger = logging.getLogger(__name__)


def seed_chains(store: ChainStore, interpreter: ChainInterpreter, settings: ControllerSettings) -> int:
    """
    Save the YAML chains of the seed directory that the seed user does not have yet

    Returns:
        Number of chains created
    """
    if settings.chain_seed_dir is None:
        return 0

    existing = {chain.name for chain in store.list_chains(settings.chain_seed_user)}
    created = 0
    for chain in interpreter.discover_chains(settings.chain_seed_dir, settings.chain_seed_user):
        if chain.name in existing:
            continue
        try:
            store.create_chain(chain)
        except (ChainValidationError, PersistenceError) as e:
            logger.warning(f"Could not seed chain '{chain.name}': {e}")
            continue
        created += 1

    logger.info(f"Seeded {created} chain(s) from {settings.chain_seed_dir}")
    return created


def create_app(
    settings: Optional[ControllerSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    pipeline_runner: Optional[PipelineRunner] = None,
) -> FastAPI:
    """
    Build the application

    Args:
        settings: Configuration (defaults to ControllerSettings.from_env())
        transport: httpx transport for module calls (tests pass a MockTransport)
        pipeline_runner: Optional hook run after successful runs that request it
    """
    settings = settings or ControllerSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown"""
        # Startup
        logger.info("AI Controller starting...")
        interpreter = ChainInterpreter()
        resolver = VariableResolver()
        store = ChainStore(settings.database_url, interpreter=interpreter)
        http_client = ModuleHTTPClient(
            settings.module_urls,
            timeout=settings.step_timeout_seconds,
            transport=transport,
        )
        engine = ExecutionEngine(
            StepExecutor(http_client, resolver, settings.step_timeout_seconds),
            store=store,
            resolver=resolver,
            evaluator=ConditionEvaluator(resolver),
            interpreter=interpreter,
            max_jumps=settings.max_routing_jumps,
            log_dir=settings.execution_log_dir,
            pipeline_runner=pipeline_runner,
        )

        app.state.settings = settings
        app.state.interpreter = interpreter
        app.state.store = store
        app.state.http_client = http_client
        app.state.engine = engine

        seed_chains(store, interpreter, settings)

        yield

        # Shutdown
        logger.info("AI Controller shutting down...")
        await http_client.close()
        store.close()

    app = FastAPI(
        title="AI Controller API",
        description="Chain storage and execution for the game modules",
        version=__version__,
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "ai-controller",
            "timestamp": datetime.utcnow().isoformat(),
        }

    # Include routers
    app.include_router(chains.router)
    app.include_router(executions.router)
    app.include_router(modules.router)

    return app
