"""
Execution Context

Mutable working state of one chain run.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Namespaces that are never step ids
RESERVED_NAMESPACES = ("input", "env", "context")


@dataclass
class ExecutionContext:
    """
    Working state of a run

    Attributes:
        input: Caller-supplied input
        steps: Step id -> stored response body
        env: Caller-supplied environment overrides
        context: Run metadata (user_id, chain_id, run_id)

    Stored results are deep copies and are never mutated in place. A step id
    is only rebound when routing re-executes the step (backward jump) or
    splices a jumped chain's output into it.
    """
    input: Dict[str, Any] = field(default_factory=dict)
    steps: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, Any] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)

    def record(self, step_id: str, value: Any) -> None:
        """Store a step's response body under its id"""
        self.steps[step_id] = copy.deepcopy(value)

    def has_result(self, step_id: str) -> bool:
        return step_id in self.steps

    def namespace(self, name: str) -> Optional[Any]:
        """
        Resolve the first segment of a variable path

        Returns:
            The input/env/context slice, a step's stored result, or None

        Example:
            >>> ctx = ExecutionContext(input={"a": 1}, steps={"step_1": {"x": 2}})
            >>> ctx.namespace("step_1")
            {'x': 2}
        """
        if name == "input":
            return self.input
        if name == "env":
            return self.env
        if name == "context":
            return self.context
        if name in self.steps:
            return self.steps[name]
        # "step_<id>" addresses a step whose id is "<id>"
        if name.startswith("step_") and name[len("step_"):] in self.steps:
            return self.steps[name[len("step_"):]]
        return None

    def template_variables(self) -> Dict[str, Any]:
        """
        Names visible to templates

        Every step result is available under its id and under "step_<id>";
        a real step id wins over an alias, and input/env/context win over both.
        """
        variables = {f"step_{step_id}": value for step_id, value in self.steps.items()}
        variables.update(self.steps)
        variables.update(input=self.input, env=self.env, context=self.context)
        return variables

    def has_namespace(self, name: str) -> bool:
        if name in RESERVED_NAMESPACES or name in self.steps:
            return True
        return name.startswith("step_") and name[len("step_"):] in self.steps
