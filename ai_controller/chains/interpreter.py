"""
Chain Interpreter

Parses chain definitions (dicts or YAML), validates them, and plans the
parallel execution groups.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..exceptions import ChainValidationError, TemplateResolutionError
from .context import RESERVED_NAMESPACES
from .models import (
    ChainConfiguration,
    ChainStep,
    ConditionOperator,
    LogicCondition,
    LogicGroup,
    RoutingAction,
)
from .variables import find_malformed_templates, single_expression, split_path

logger = logging.getLogger(__name__)


def format_validation_error(error: ValidationError) -> List[str]:
    """Flatten pydantic errors into "location: message" strings"""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{location}: {item.get('msg')}" if location else item.get("msg", ""))
    return messages


def group_at(steps: List[ChainStep], index: int) -> List[int]:
    """
    Indices of the execution group starting at ``index``

    A parallel step pulls in every directly following parallel step; any
    other step is a group of one.
    """
    if not steps[index].parallel:
        return [index]

    end = index
    while end + 1 < len(steps) and steps[end + 1].parallel:
        end += 1
    return list(range(index, end + 1))


class ChainInterpreter:
    """
    Interprets chain definitions

    Responsibilities:
    1. Parse chain definitions from dicts and YAML files
    2. Validate references (step ids, jump targets, condition sources)
    3. Reject malformed templates before anything runs
    4. Partition steps into parallel groups
    """

    def load_from_yaml(self, yaml_path: Path, user_id: Optional[str] = None) -> ChainConfiguration:
        """
        Load and parse a chain definition from a YAML file

        Args:
            yaml_path: Path to YAML file
            user_id: Owner to assign when the file does not name one

        Returns:
            ChainConfiguration object

        Raises:
            ChainValidationError: If YAML is invalid or chain structure is wrong
        """
        try:
            with open(yaml_path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ChainValidationError(f"Invalid YAML: {e}")
        except FileNotFoundError:
            raise ChainValidationError(f"Chain file not found: {yaml_path}")

        if not isinstance(data, dict):
            raise ChainValidationError(f"Chain file must contain a mapping: {yaml_path}")

        if user_id and not data.get("user_id"):
            data["user_id"] = user_id

        return self.load_from_dict(data)

    def load_from_dict(self, data: Dict[str, Any]) -> ChainConfiguration:
        """
        Load chain definition from dictionary

        Raises:
            ChainValidationError: If chain structure is invalid
        """
        try:
            return ChainConfiguration.model_validate(data)
        except ValidationError as e:
            errors = format_validation_error(e)
            raise ChainValidationError(f"Invalid chain definition: {'; '.join(errors)}", errors)

    def validate(self, chain: ChainConfiguration) -> None:
        """
        Validate a parsed chain

        Raises:
            ChainValidationError: With every problem found
        """
        errors = self.collect_errors(chain)
        if not errors:
            return

        template_errors = [e for e in errors if e.startswith("Malformed template")]
        if template_errors and len(template_errors) == len(errors):
            raise TemplateResolutionError(f"Invalid chain '{chain.name}': {'; '.join(errors)}", errors)
        raise ChainValidationError(f"Invalid chain '{chain.name}': {'; '.join(errors)}", errors)

    def collect_errors(self, chain: ChainConfiguration) -> List[str]:
        """List every validation problem of a chain (empty when valid)"""
        errors: List[str] = []
        step_ids = [step.id for step in chain.steps]
        known = set(step_ids)

        seen = set()
        for step_id in step_ids:
            if step_id in seen:
                errors.append(f"Duplicate step id '{step_id}'")
            seen.add(step_id)
            if step_id in RESERVED_NAMESPACES:
                errors.append(f"Step id '{step_id}' is a reserved namespace")

        # Name a condition may gate on -> position of that step's execution group
        group_of: Dict[str, int] = {}
        groups = self.plan_groups(chain)
        for position, group in enumerate(groups):
            for step_id in group:
                group_of.setdefault(step_id, position)
        for position, group in enumerate(groups):
            for step_id in group:
                group_of.setdefault(f"step_{step_id}", position)

        for step in chain.steps:
            errors.extend(self._step_errors(step, known, group_of))

        for text in find_malformed_templates(chain.output_template):
            errors.append(f"Malformed template in output_template: {text!r}")

        return errors

    def _step_errors(self, step: ChainStep, known: set, group_of: Dict[str, int]) -> List[str]:
        errors = []

        for part_name in ("endpoint", "params", "body", "headers", "input_mapping"):
            for text in find_malformed_templates(getattr(step, part_name)):
                errors.append(f"Malformed template in step '{step.id}' {part_name}: {text!r}")

        if step.condition:
            source = step.condition.source_step
            if source and source != "input" and source not in known:
                errors.append(f"Step '{step.id}' condition references unknown step '{source}'")
            else:
                if not source:
                    segments = split_path(step.condition.field)
                    source = segments[0] if segments else ""
                # Only a step of an earlier group has a result when the gate is checked
                if source in group_of and group_of[source] >= group_of[step.id]:
                    errors.append(f"Step '{step.id}' condition source '{source}' is not in an earlier group")
            errors.extend(self._condition_errors(step.condition, f"step '{step.id}' condition"))

        for position, rule in enumerate(step.conditional_routing or [], start=1):
            where = f"step '{step.id}' routing rule {position}"
            if rule.action == RoutingAction.JUMP_TO_STEP and rule.target not in known:
                errors.append(f"Unknown jump target '{rule.target}' in {where}")
            for text in find_malformed_templates(rule.input_mapping):
                errors.append(f"Malformed template in {where} input_mapping: {text!r}")
            errors.extend(self._condition_errors(rule.condition, where))

        return errors

    def _condition_errors(self, condition, where: str) -> List[str]:
        if isinstance(condition, LogicGroup):
            errors = []
            for nested in condition.conditions:
                errors.extend(self._condition_errors(nested, where))
            return errors

        errors = []
        if isinstance(condition, LogicCondition) and condition.operator == ConditionOperator.IN_ARRAY:
            value = condition.value
            is_token = isinstance(value, str) and single_expression(value.strip()) is not None
            if not isinstance(value, list) and not is_token:
                errors.append(f"in_array value must be an array in {where}")
        for text in find_malformed_templates(condition.value):
            errors.append(f"Malformed template in {where} value: {text!r}")
        return errors

    def plan_groups(self, chain: ChainConfiguration) -> List[List[str]]:
        """
        Partition the chain into execution groups in declared order

        Example:
            steps: a, b(parallel), c(parallel), d
            -> [["a"], ["b", "c"], ["d"]]
        """
        groups = []
        index = 0
        while index < len(chain.steps):
            indices = group_at(chain.steps, index)
            groups.append([chain.steps[i].id for i in indices])
            index = indices[-1] + 1
        return groups

    def get_execution_summary(self, chain: ChainConfiguration) -> Dict[str, Any]:
        """
        Human-readable summary of how a chain will run

        Returns:
            Summary dict with step count, groups and routing/jump information
        """
        groups = self.plan_groups(chain)
        return {
            "chain_name": chain.name,
            "total_steps": len(chain.steps),
            "total_groups": len(groups),
            "parallel_groups": [g for g in groups if len(g) > 1],
            "execution_order": [step.id for step in chain.steps],
            "routing_steps": [s.id for s in chain.steps if s.conditional_routing],
            "valid": not self.collect_errors(chain),
        }

    def discover_chains(self, directory: Path, user_id: str) -> List[ChainConfiguration]:
        """
        Load every valid YAML chain in a directory

        Invalid files are logged and skipped.
        """
        directory = Path(directory)
        if not directory.exists():
            return []

        chain_files = sorted(list(directory.glob("**/*.yaml")) + list(directory.glob("**/*.yml")))

        chains = []
        for yaml_file in chain_files:
            try:
                chain = self.load_from_yaml(yaml_file, user_id=user_id)
                self.validate(chain)
            except ChainValidationError as e:
                logger.warning(f"Skipping invalid chain file {yaml_file}: {e}")
                continue
            chains.append(chain)

        return chains
