"""
Execution API Routes

Run saved or ad-hoc chains and read execution history.

A run always answers with the structured result. Failed steps give a normal
response with success false; only validation (400), routing cycles (409) and
history write failures (500) change the status code, and those responses
still carry the result.
"""

import logging

from anyio.to_thread import run_sync
from fastapi import APIRouter, Depends, HTTPException, Query

from ..chains.engine import ExecutionEngine
from ..chains.interpreter import ChainInterpreter
from ..chains.models import ExecutionResult
from ..database.store import ChainStore
from ..exceptions import ChainNotFoundError, ChainValidationError, PersistenceError
from .dependencies import get_engine, get_interpreter, get_store
from .models import ApiResponse, ExecuteAdHocChainRequest, ExecuteChainRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["executions"])


def execution_response(result: ExecutionResult) -> ApiResponse:
    """
    Map a run result to a response

    Raises:
        HTTPException: 400 for validation, 409 for routing cycles, 500 when
            the history record could not be written (result included)
    """
    data = result.model_dump(mode="json")

    if result.error_code == "validation":
        raise HTTPException(status_code=400, detail={"success": False, "error": result.error, "data": data})
    if result.error_code == "routing_cycle":
        raise HTTPException(status_code=409, detail={"success": False, "error": result.error, "data": data})
    if result.persistence_error:
        raise HTTPException(
            status_code=500,
            detail={"success": False, "error": f"Execution history not saved: {result.persistence_error}", "data": data},
        )

    message = "Chain executed successfully" if result.success else "Chain executed with failures"
    return ApiResponse(success=result.success, data=data, message=message, error=result.error)


@router.post("/execute/{chain_id}", response_model=ApiResponse)
async def execute_chain(
    chain_id: int,
    request: ExecuteChainRequest,
    user_id: str = Query(..., alias="userId"),
    store: ChainStore = Depends(get_store),
    engine: ExecutionEngine = Depends(get_engine),
):
    """
    Run a saved chain

    Example:
        POST /execute/1?userId=admin
        {"input": {"message": "I attack the goblin", "userId": "admin", "characterName": "Thorin"}}
    """
    try:
        chain = await run_sync(store.get_chain, chain_id, user_id)
    except ChainNotFoundError as e:
        raise HTTPException(status_code=404, detail={"success": False, "error": str(e)})
    except PersistenceError as e:
        logger.error(f"Error loading chain {chain_id}: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})

    result = await engine.execute(chain, user_id, request.input, env=request.env)
    return execution_response(result)


@router.post("/execute", response_model=ApiResponse)
async def execute_ad_hoc_chain(
    request: ExecuteAdHocChainRequest,
    engine: ExecutionEngine = Depends(get_engine),
    interpreter: ChainInterpreter = Depends(get_interpreter),
):
    """
    Run a chain without saving it

    Example:
        POST /execute
        {
            "owner": "admin",
            "name": "Quick intent check",
            "steps": [{"id": "step_1", "module": "intent", "endpoint": "/interpret",
                       "method": "POST", "body": {"message": "{{input.message}}"}}],
            "input": {"message": "Hello"}
        }
    """
    try:
        chain = interpreter.load_from_dict({
            "user_id": request.caller,
            "name": request.name,
            "description": request.description,
            "steps": request.steps,
            "output_template": request.output_template,
        })
    except ChainValidationError as e:
        raise HTTPException(status_code=400, detail={"success": False, "error": str(e), "errors": e.errors})

    result = await engine.execute(chain, request.caller, request.input, env=request.env)
    return execution_response(result)


@router.get("/execution/{execution_id}", response_model=ApiResponse)
async def get_execution(
    execution_id: int,
    user_id: str = Query(..., alias="userId"),
    store: ChainStore = Depends(get_store),
):
    """Get one execution history record"""
    try:
        result = await run_sync(store.get_execution, execution_id, user_id)
        return ApiResponse(success=True, data=result.model_dump(mode="json"))
    except ChainNotFoundError as e:
        raise HTTPException(status_code=404, detail={"success": False, "error": str(e)})
    except PersistenceError as e:
        logger.error(f"Error getting execution {execution_id}: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})


@router.get("/executions/{user_id}", response_model=ApiResponse)
async def list_executions(
    user_id: str,
    limit: int = Query(50, description="Maximum records (clamped to 1..1000)"),
    store: ChainStore = Depends(get_store),
):
    """List a user's runs, newest first"""
    try:
        results = await run_sync(store.list_executions, user_id, limit)
        return ApiResponse(success=True, data=[r.model_dump(mode="json") for r in results])
    except PersistenceError as e:
        logger.error(f"Error listing executions for {user_id}: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})


@router.get("/chain/{chain_id}/executions", response_model=ApiResponse)
async def list_chain_executions(
    chain_id: int,
    user_id: str = Query(..., alias="userId"),
    limit: int = Query(50),
    store: ChainStore = Depends(get_store),
):
    """List the runs of one of the caller's chains"""
    try:
        results = await run_sync(store.list_chain_executions, chain_id, user_id, limit)
        return ApiResponse(success=True, data=[r.model_dump(mode="json") for r in results])
    except ChainNotFoundError as e:
        raise HTTPException(status_code=404, detail={"success": False, "error": str(e)})
    except PersistenceError as e:
        logger.error(f"Error listing executions of chain {chain_id}: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})


@router.get("/stats", response_model=ApiResponse)
async def get_statistics(store: ChainStore = Depends(get_store)):
    """Aggregate chain and execution statistics"""
    try:
        return ApiResponse(success=True, data=await run_sync(store.get_statistics))
    except PersistenceError as e:
        logger.error(f"Error computing statistics: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": str(e)})
