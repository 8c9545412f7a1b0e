"""
Module API Routes

Metadata and health of the target modules.
"""

from fastapi import APIRouter, Depends, HTTPException

from ..clients.modules.http import ModuleHTTPClient
from ..clients.modules.registry import get_module, get_modules
from ..config import ControllerSettings
from .dependencies import get_http_client, get_settings
from .models import ApiResponse

router = APIRouter(prefix="/modules", tags=["modules"])


@router.get("", response_model=ApiResponse)
async def list_modules(settings: ControllerSettings = Depends(get_settings)):
    """List every target module with its endpoints"""
    modules = get_modules(settings.module_urls)
    return ApiResponse(success=True, data=[m.to_dict() for m in modules])


@router.get("/health", response_model=ApiResponse)
async def get_modules_health(http_client: ModuleHTTPClient = Depends(get_http_client)):
    """Call GET /health on every module"""
    health = await http_client.health_check()
    return ApiResponse(success=all(health.values()), data=health)


@router.get("/{name}", response_model=ApiResponse)
async def get_module_info(name: str, settings: ControllerSettings = Depends(get_settings)):
    """Get one module by type (e.g. "character")"""
    module = get_module(name, settings.module_urls)
    if module is None:
        raise HTTPException(status_code=404, detail={"success": False, "error": f"Module not found: {name}"})
    return ApiResponse(success=True, data=module.to_dict())
