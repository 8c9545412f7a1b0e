"""
Chain System

Provides tools for defining, validating, and executing chains of module calls.

Usage:
    from ai_controller.chains import ChainInterpreter, ExecutionEngine

    # Load and inspect a chain definition
    interpreter = ChainInterpreter()
    chain = interpreter.load_from_yaml("chains/process_user_message.yaml", user_id="admin")
    print(interpreter.plan_groups(chain))

    # Execute it
    engine = ExecutionEngine(step_executor, store=store)
    result = await engine.execute(chain, "admin", {"message": "I attack the goblin"})
"""

from .models import (
    ModuleType,
    HttpMethod,
    ConditionOperator,
    StepType,
    RoutingAction,
    ExecutionStatus,
    LogicCondition,
    LogicGroup,
    StepCondition,
    RoutingRule,
    ChainStep,
    ChainConfiguration,
    StepRequest,
    StepResult,
    PipelineOutcome,
    ExecutionResult,
)
from .context import ExecutionContext
from .variables import VariableResolver
from .conditions import ConditionEvaluator
from .interpreter import ChainInterpreter
from .merge import deep_merge
from .engine import ExecutionEngine, PipelineRunner

__all__ = [
    # Models
    'ModuleType',
    'HttpMethod',
    'ConditionOperator',
    'StepType',
    'RoutingAction',
    'ExecutionStatus',
    'LogicCondition',
    'LogicGroup',
    'StepCondition',
    'RoutingRule',
    'ChainStep',
    'ChainConfiguration',
    'StepRequest',
    'StepResult',
    'PipelineOutcome',
    'ExecutionResult',
    # Execution
    'ExecutionContext',
    'VariableResolver',
    'ConditionEvaluator',
    'ChainInterpreter',
    'deep_merge',
    'ExecutionEngine',
    'PipelineRunner',
]
