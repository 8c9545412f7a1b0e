"""
Chain Models

Data models for chain configurations, routing rules, step results and
execution history records.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ModuleType(str, Enum):
    """Target services a step can call"""
    INTENT = "intent"
    CHARACTER = "character"
    SCENE = "scene"
    ITEM = "item"
    STORYTELLER = "storyteller"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PATCH = "PATCH"
    PUT = "PUT"
    DELETE = "DELETE"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    IN_ARRAY = "in_array"


class StepType(str, Enum):
    MODULE_CALL = "module_call"
    CHAIN_CALL = "chain_call"


class RoutingAction(str, Enum):
    JUMP_TO_STEP = "jump_to_step"
    JUMP_TO_CHAIN = "jump_to_chain"
    STOP_CHAIN = "stop_chain"


class ExecutionStatus(str, Enum):
    """States of a single run"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# Conditions and routing
# ============================================================================

class LogicCondition(BaseModel):
    """
    A single comparison

    Attributes:
        source_step: Step whose stored result the field path is read from
            ("input" selects the caller input). When omitted, field is a full
            namespaced path such as "step_1.result.success".
        field: Path into the source (dots and [n] indices)
        operator: Comparison operator
        value: Comparison value (unused for exists/not_exists)
    """
    model_config = ConfigDict(populate_by_name=True)

    source_step: Optional[str] = Field(None, alias="sourceStep")
    field: str = Field(..., min_length=1)
    operator: ConditionOperator
    value: Any = None


class StepCondition(LogicCondition):
    """Skip gate evaluated before a step runs"""
    enabled: bool = True


class LogicGroup(BaseModel):
    """AND/OR combination of comparisons and nested groups"""
    logic: Literal["AND", "OR"]
    conditions: List[Union["LogicGroup", LogicCondition]] = Field(..., min_length=1)

    @field_validator("logic", mode="before")
    @classmethod
    def normalize_logic(cls, v):
        return v.upper() if isinstance(v, str) else v


LogicGroup.model_rebuild()

RoutingCondition = Union[LogicGroup, LogicCondition]


class RoutingRule(BaseModel):
    """
    Post-step routing rule

    Attributes:
        condition: Comparison or AND/OR group deciding whether the rule fires
        action: jump_to_step, jump_to_chain or stop_chain
        target: Step id (jump_to_step) or chain id (jump_to_chain)
        input_mapping: Template resolved into the input of the target chain
    """
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    condition: RoutingCondition
    action: RoutingAction
    target: Optional[Union[int, str]] = None
    target_name: Optional[str] = Field(None, alias="targetName")
    description: Optional[str] = None
    input_mapping: Optional[Dict[str, Any]] = None

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v):
        # Chains saved by older builders use skip_to_step
        if v == "skip_to_step":
            return RoutingAction.JUMP_TO_STEP.value
        return v

    @model_validator(mode="after")
    def check_target(self):
        if self.action == RoutingAction.STOP_CHAIN:
            return self
        if self.target is None or self.target == "":
            raise ValueError(f"Routing action '{self.action.value}' requires a target")
        if self.action == RoutingAction.JUMP_TO_CHAIN:
            try:
                self.target = int(self.target)
            except (TypeError, ValueError):
                raise ValueError(f"jump_to_chain target must be a chain id, got {self.target!r}")
        else:
            self.target = str(self.target)
        return self


# ============================================================================
# Chain definition
# ============================================================================

class ChainStep(BaseModel):
    """
    One step of a chain

    Attributes:
        id: Unique step identifier within the chain
        type: module_call (HTTP call to a module) or chain_call (run a saved chain)
        module: Target module for module_call steps
        endpoint: Endpoint path; may contain {{...}} tokens and :param placeholders
        method: HTTP method
        params: Query/path parameters (templates allowed)
        body: JSON body (templates allowed)
        headers: Extra headers (templates allowed)
        timeout: Per-step timeout in milliseconds
        parallel: Run concurrently with adjacent parallel steps
        condition: Skip the step when this evaluates false
        conditional_routing: Rules evaluated in order after the step completes
        continue_on_failure: Keep running later groups when this step fails
        chain_id: Chain executed by a chain_call step
        input_mapping: Input template for a chain_call step
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    type: StepType = StepType.MODULE_CALL
    module: Optional[ModuleType] = None
    endpoint: Optional[str] = None
    method: HttpMethod = HttpMethod.GET
    params: Optional[Dict[str, Any]] = None
    body: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, Any]] = None
    timeout: Optional[float] = Field(None, gt=0)
    parallel: bool = False
    condition: Optional[StepCondition] = None
    conditional_routing: Optional[List[RoutingRule]] = Field(None, alias="conditionalRouting")
    continue_on_failure: bool = True
    chain_id: Optional[int] = None
    chain_name: Optional[str] = None
    input_mapping: Optional[Dict[str, Any]] = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Step id must not be blank")
        return v

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v):
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_step_type(self):
        if self.type == StepType.MODULE_CALL:
            if self.module is None:
                raise ValueError(f"Step '{self.id}' needs a module")
            if not self.endpoint:
                raise ValueError(f"Step '{self.id}' needs an endpoint")
        elif self.chain_id is None:
            raise ValueError(f"Chain call step '{self.id}' needs a chain_id")
        return self


class ChainConfiguration(BaseModel):
    """A named, ordered list of steps plus an optional output template"""

    id: Optional[int] = None
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    steps: List[ChainStep] = Field(..., min_length=1)
    output_template: Optional[Any] = None
    meta_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def step_index(self, step_id: str) -> int:
        """Position of a step in the chain, -1 if absent"""
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return -1

    def steps_for_storage(self) -> List[Dict[str, Any]]:
        """Steps as JSON-ready dicts, keeping the camelCase keys of stored chains"""
        return [
            step.model_dump(mode="json", by_alias=True, exclude_none=True)
            for step in self.steps
        ]


# ============================================================================
# Results
# ============================================================================

class StepRequest(BaseModel):
    """Resolved request actually sent for a step"""
    url: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    body: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, Any]] = None


class StepResult(BaseModel):
    """
    Result of executing (or skipping) a single step

    Attributes:
        response: Response body returned by the module (or sub-chain output)
        status: HTTP status code, None when no response was received
        success: True for a 2xx response
        skipped: True when the step condition was not met
        routing_matched: Routing rule that fired after this step, if any
        sub_chain_result: Full result of a chain reached via chain_call or jump_to_chain
    """
    step_id: str
    step_name: Optional[str] = None
    step_type: StepType = StepType.MODULE_CALL
    module: Optional[ModuleType] = None
    endpoint: Optional[str] = None
    method: Optional[HttpMethod] = None
    request: Optional[StepRequest] = None
    response: Any = None
    status: Optional[int] = None
    success: bool
    error: Optional[str] = None
    duration_ms: int = 0
    skipped: bool = False
    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat())
    routing_evaluated: bool = False
    routing_matched: Optional[Dict[str, Any]] = None
    routing_action_taken: Optional[str] = None
    sub_chain_id: Optional[int] = None
    sub_chain_result: Optional[Dict[str, Any]] = None


class PipelineOutcome(BaseModel):
    """Outcome reported by an external pipeline runner"""
    success: bool
    summary: Optional[str] = None


class ExecutionResult(BaseModel):
    """
    Result of one chain run, persisted as an execution history record

    Attributes:
        steps: Per-step trace in execution order (re-executed steps appear again)
        output: Rendered output_template, or the per-step result map
        error_code: validation, routing_cycle, cancelled or step_failed
        persistence_error: Set when the history record could not be written
    """
    id: Optional[int] = None
    run_id: Optional[str] = None
    user_id: str
    chain_id: Optional[int] = None
    chain_name: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    steps: List[StepResult] = Field(default_factory=list)
    output: Any = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    success: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    total_duration_ms: int = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    persistence_error: Optional[str] = None
    pipeline: Optional[PipelineOutcome] = None

    def get_step_result(self, step_id: str) -> Optional[StepResult]:
        """Latest result recorded for a step"""
        for result in reversed(self.steps):
            if result.step_id == step_id:
                return result
        return None

    def get_failed_steps(self) -> List[str]:
        """Step IDs that ran and failed"""
        return [r.step_id for r in self.steps if not r.success and not r.skipped]

    def get_skipped_steps(self) -> List[str]:
        return [r.step_id for r in self.steps if r.skipped]
