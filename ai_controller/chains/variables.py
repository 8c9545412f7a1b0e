"""
Variable Resolver

Resolves Jinja2 {{ ... }} expressions in step requests and output templates.

Names available to templates:
    input       caller-supplied input
    env         caller-supplied environment overrides
    context     run metadata (user_id, chain_id, run_id)
    <step id>   stored result of a step ("step_1"); "step_<id>" also reaches step "<id>"

A string that is exactly one expression is replaced by the expression's value
with its JSON type preserved. Expressions embedded in text are rendered
(booleans as true/false, objects as JSON, missing values as ""). Paths that
do not resolve produce None and never raise, so a run keeps going and the gap
shows up in the ordinary result.
"""

import json
import logging
import re
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from jinja2 import ChainableUndefined, Environment, TemplateSyntaxError, UndefinedError, nodes
from jinja2.runtime import Undefined

from .context import ExecutionContext

logger = logging.getLogger(__name__)

INDEXED_SEGMENT = re.compile(r"^([^\[\]]*)((?:\[\d+\])+)$")
INDEX_PATTERN = re.compile(r"\[(\d+)\]")

# Errors an expression can raise while evaluating against step data
EVALUATION_ERRORS = (UndefinedError, TypeError, ValueError, ArithmeticError)

PathSegment = Union[str, int]


def split_path(path: str) -> List[PathSegment]:
    """
    Split a dot/array path into segments

    Example:
        >>> split_path("step_2.characters[0].name")
        ['step_2', 'characters', 0, 'name']
    """
    segments: List[PathSegment] = []
    for part in path.strip().split("."):
        match = INDEXED_SEGMENT.match(part)
        if match:
            name, indices = match.groups()
            if name:
                segments.append(name)
            segments.extend(int(i) for i in INDEX_PATTERN.findall(indices))
        else:
            segments.append(part)
    return segments


def get_value_by_path(data: Any, path: Union[str, Sequence[PathSegment]]) -> Any:
    """
    Walk a path through nested dicts and lists

    Args:
        data: Root value
        path: Dot/array path string or pre-split segments

    Returns:
        The value at the path, or None when any segment is missing
    """
    segments = split_path(path) if isinstance(path, str) else path
    current = data

    for segment in segments:
        if current is None:
            return None

        if isinstance(current, list):
            if isinstance(segment, str):
                if not segment.isdigit():
                    return None
                segment = int(segment)
            if segment >= len(current):
                return None
            current = current[segment]
        elif isinstance(current, dict):
            key = str(segment) if isinstance(segment, int) else segment
            if key not in current:
                return None
            current = current[key]
        else:
            return None

    return current


def to_text(value: Any) -> str:
    """String form used when a value is embedded in surrounding text"""
    if value is None or isinstance(value, Undefined):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


class TemplateEnvironment(Environment):
    """
    Jinja2 environment for JSON step data

    Attribute access only reads dict keys, so a field named like a dict
    method ("items", "keys") resolves to the data and Python attributes are
    never reachable. Missing names and paths are chainable undefined values.
    """

    def __init__(self):
        super().__init__(
            variable_start_string="{{",
            variable_end_string="}}",
            autoescape=False,
            keep_trailing_newline=True,
            undefined=ChainableUndefined,
            finalize=to_text,
        )

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, dict):
            return self.getitem(obj, attribute)
        return self.undefined(obj=obj, name=attribute)

    def getitem(self, obj: Any, argument: Any) -> Any:
        if isinstance(obj, dict):
            key = argument if argument in obj else str(argument)
            if key in obj:
                return obj[key]
            return self.undefined(obj=obj, name=argument)
        return super().getitem(obj, argument)


# Used for syntax checks only; never renders
_SYNTAX_ENV = TemplateEnvironment()


def iter_template_strings(value: Any) -> Iterator[str]:
    """Yield every string leaf of a JSON value"""
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_template_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from iter_template_strings(item)


def is_template(text: str) -> bool:
    return "{{" in text or "{%" in text or "{#" in text


def find_malformed_templates(value: Any) -> List[str]:
    """
    Find strings that are not valid templates

    Returns:
        List of the offending strings (empty expressions, unclosed tags, ...)
    """
    malformed = []
    for text in iter_template_strings(value):
        if not is_template(text):
            continue
        try:
            _SYNTAX_ENV.parse(text)
        except TemplateSyntaxError:
            malformed.append(text)
    return malformed


def single_expression(text: str) -> Optional[str]:
    """
    Source of the expression when ``text`` is exactly one {{ ... }} token

    Example:
        >>> single_expression("{{ step_1.result }}")
        ' step_1.result '
        >>> single_expression("char_{{ input.name }}") is None
        True
    """
    if not (text.startswith("{{") and text.endswith("}}")):
        return None
    try:
        body = _SYNTAX_ENV.parse(text).body
    except TemplateSyntaxError:
        return None

    if len(body) != 1 or not isinstance(body[0], nodes.Output) or len(body[0].nodes) != 1:
        return None
    if isinstance(body[0].nodes[0], nodes.TemplateData):
        return None
    return text[2:-2]


class VariableResolver:
    """Resolves {{ ... }} expressions against an ExecutionContext"""

    def __init__(self, cache_size: int = 512):
        self.env = TemplateEnvironment()
        self._compile_expression = lru_cache(maxsize=cache_size)(self.env.compile_expression)
        self._from_string = lru_cache(maxsize=cache_size)(self.env.from_string)

    def resolve(self, template: Any, context: ExecutionContext) -> Any:
        """
        Resolve every expression in a JSON value

        Args:
            template: Any JSON value (strings, dicts and lists are walked)
            context: Execution context of the run

        Returns:
            A new value with expressions replaced

        Example:
            >>> ctx = ExecutionContext(input={"name": "Thorin"}, steps={"step_1": {"result": {"x": 5}}})
            >>> resolver.resolve({"n": "{{step_1.result.x}}", "id": "char_{{input.name}}"}, ctx)
            {'n': 5, 'id': 'char_Thorin'}
        """
        if isinstance(template, str):
            if not is_template(template):
                return template
            return self._resolve_string(template, context.template_variables())

        if isinstance(template, dict):
            return {key: self.resolve(value, context) for key, value in template.items()}

        if isinstance(template, list):
            return [self.resolve(item, context) for item in template]

        return template

    def lookup(self, path: str, context: ExecutionContext) -> Any:
        """
        Resolve a single namespaced path (condition fields)

        Returns:
            The value, or None if the namespace or path does not exist
        """
        segments = split_path(path)
        head = segments[0] if segments else ""

        if not isinstance(head, str) or not head or not context.has_namespace(head):
            logger.debug(f"Unresolved variable '{path}': unknown namespace '{head}'")
            return None

        value = get_value_by_path(context.namespace(head), segments[1:])
        if value is None:
            logger.debug(f"Unresolved variable '{path}': path missing under '{head}'")
        return value

    def _resolve_string(self, value: str, variables: Dict[str, Any]) -> Any:
        expression = single_expression(value)
        try:
            if expression is not None:
                try:
                    evaluate = self._compile_expression(expression, undefined_to_none=True)
                except TemplateSyntaxError:
                    # Whitespace-control markers ("{{- x -}}") are not part of an expression
                    pass
                else:
                    return evaluate(**variables)

            return self._from_string(value).render(variables)

        except TemplateSyntaxError as e:
            logger.warning(f"Leaving malformed template unresolved: {value!r} ({e})")
            return value
        except EVALUATION_ERRORS as e:
            logger.debug(f"Unresolved template {value!r}: {e}")
            return None
