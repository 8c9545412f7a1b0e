"""
API Request/Response Models
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ApiResponse(BaseModel):
    """Envelope of every API response"""
    success: bool
    data: Any = None
    message: Optional[str] = None
    error: Optional[str] = None


class CreateChainRequest(BaseModel):
    """Request body for saving a chain"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1, description="Owner of the chain")
    name: str = Field(..., description="Chain name")
    description: Optional[str] = None
    steps: List[Dict[str, Any]] = Field(..., description="Step definitions")
    output_template: Optional[Any] = None
    meta_data: Optional[Dict[str, Any]] = None


class ExecuteChainRequest(BaseModel):
    """Request body for running a saved chain"""
    input: Dict[str, Any] = Field(default_factory=dict, description="Chain input, reachable as {{input.*}}")
    env: Optional[Dict[str, Any]] = Field(None, description="Environment overrides, reachable as {{env.*}}")


class ExecuteAdHocChainRequest(BaseModel):
    """Request body for running an unsaved chain"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    owner: Optional[str] = None
    name: str = "Ad-hoc chain"
    description: Optional[str] = None
    steps: List[Dict[str, Any]]
    input: Dict[str, Any] = Field(default_factory=dict)
    output_template: Optional[Any] = None
    env: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def check_owner(self):
        if not (self.user_id or self.owner):
            raise ValueError("user_id or owner is required")
        return self

    @property
    def caller(self) -> str:
        return self.user_id or self.owner
