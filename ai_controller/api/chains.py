"""
Chain API Routes

Create, read, update and delete chains. Every route is scoped to the calling
user; chains of other users are reported as not found.
"""

import logging
from typing import Any, Dict

from anyio.to_thread import run_sync
from fastapi import APIRouter, Body, Depends, HTTPException, Query

from ..chains.interpreter import ChainInterpreter
from ..database.store import ChainStore
from ..exceptions import ChainNotFoundError, ChainValidationError, PersistenceError
from .dependencies import get_interpreter, get_store
from .models import ApiResponse, CreateChainRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chains"])


def dump_chain(chain) -> Dict[str, Any]:
    """Chain as JSON, keeping the camelCase keys of stored chains"""
    return chain.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/chain", response_model=ApiResponse, status_code=201)
async def create_chain(
    request: CreateChainRequest,
    store: ChainStore = Depends(get_store),
    interpreter: ChainInterpreter = Depends(get_interpreter),
):
    """
    Save a new chain

    Example:
        POST /chain
        {
            "userId": "admin",
            "name": "Process user message",
            "steps": [
                {"id": "step_1", "module": "intent", "endpoint": "/interpret",
                 "method": "POST", "body": {"message": "{{input.message}}"}}
            ]
        }
    """
    try:
        chain = interpreter.load_from_dict(request.model_dump())
        saved = await run_sync(store.create_chain, chain)
        return ApiResponse(success=True, data=dump_chain(saved), message="Chain created")
    except ChainValidationError as e:
        raise HTTPException(status_code=400, detail={"success": False, "error": str(e), "errors": e.errors})
    except PersistenceError as e:
        logger.error(f"Error creating chain: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})


@router.get("/chain/{chain_id}", response_model=ApiResponse)
async def get_chain(
    chain_id: int,
    user_id: str = Query(..., alias="userId", description="Caller"),
    store: ChainStore = Depends(get_store),
):
    """Get a chain owned by the caller"""
    try:
        chain = await run_sync(store.get_chain, chain_id, user_id)
        return ApiResponse(success=True, data=dump_chain(chain))
    except ChainNotFoundError as e:
        raise HTTPException(status_code=404, detail={"success": False, "error": str(e)})
    except PersistenceError as e:
        logger.error(f"Error getting chain {chain_id}: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})


@router.get("/chain/{chain_id}/summary", response_model=ApiResponse)
async def get_chain_summary(
    chain_id: int,
    user_id: str = Query(..., alias="userId"),
    store: ChainStore = Depends(get_store),
    interpreter: ChainInterpreter = Depends(get_interpreter),
):
    """
    How a chain will run: execution groups, parallel groups and routing steps

    Example:
        GET /chain/3/summary?userId=admin
    """
    try:
        chain = await run_sync(store.get_chain, chain_id, user_id)
        summary = interpreter.get_execution_summary(chain)
        summary["groups"] = interpreter.plan_groups(chain)
        return ApiResponse(success=True, data=summary)
    except ChainNotFoundError as e:
        raise HTTPException(status_code=404, detail={"success": False, "error": str(e)})
    except PersistenceError as e:
        logger.error(f"Error summarizing chain {chain_id}: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})


@router.get("/chains/{user_id}", response_model=ApiResponse)
async def list_chains(user_id: str, store: ChainStore = Depends(get_store)):
    """List the chains of a user"""
    try:
        chains = await run_sync(store.list_chains, user_id)
        return ApiResponse(success=True, data=[dump_chain(c) for c in chains])
    except PersistenceError as e:
        logger.error(f"Error listing chains for {user_id}: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})


@router.patch("/chain/{chain_id}", response_model=ApiResponse)
async def update_chain(
    chain_id: int,
    updates: Dict[str, Any] = Body(...),
    user_id: str = Query(..., alias="userId"),
    store: ChainStore = Depends(get_store),
):
    """
    Partially update a chain

    The body is deep-merged into the stored chain; a "steps" list replaces
    the whole step list. The merged chain is validated before it is saved.

    Example:
        PATCH /chain/3?userId=admin
        {"description": "Classify intent first", "meta_data": {"trigger_pipeline": true}}
    """
    try:
        chain = await run_sync(store.update_chain, chain_id, user_id, updates)
        return ApiResponse(success=True, data=dump_chain(chain), message="Chain updated")
    except ChainNotFoundError as e:
        raise HTTPException(status_code=404, detail={"success": False, "error": str(e)})
    except ChainValidationError as e:
        raise HTTPException(status_code=400, detail={"success": False, "error": str(e), "errors": e.errors})
    except PersistenceError as e:
        logger.error(f"Error updating chain {chain_id}: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})


@router.delete("/chain/{chain_id}", response_model=ApiResponse)
async def delete_chain(
    chain_id: int,
    user_id: str = Query(..., alias="userId"),
    store: ChainStore = Depends(get_store),
):
    """Delete a chain (its execution history is kept)"""
    try:
        await run_sync(store.delete_chain, chain_id, user_id)
        return ApiResponse(success=True, message=f"Chain {chain_id} deleted")
    except ChainNotFoundError as e:
        raise HTTPException(status_code=404, detail={"success": False, "error": str(e)})
    except PersistenceError as e:
        logger.error(f"Error deleting chain {chain_id}: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})
