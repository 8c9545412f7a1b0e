"""
Tests for variable resolution
"""

from ai_controller.chains.context import ExecutionContext
from ai_controller.chains.variables import (
    VariableResolver,
    find_malformed_templates,
    get_value_by_path,
    single_expression,
    split_path,
)


def make_context():
    return ExecutionContext(
        input={"name": "Thorin", "message": "I attack the goblin", "flags": [1, 2]},
        steps={
            "step_1": {"result": {"x": 5, "success": True, "tags": ["a", "b"]}},
            "step_2": {"characters": [{"name": "Gimli"}, {"name": "Balin"}]},
            "3": {"ok": True},
        },
        env={"region": "north"},
        context={"user_id": "admin", "run_id": "r1"},
    )


resolver = VariableResolver()


def test_whole_token_preserves_type():
    value = resolver.resolve("{{step_1.result.x}}", make_context())
    assert value == 5
    assert isinstance(value, int)


def test_whole_token_returns_objects_and_booleans():
    ctx = make_context()
    assert resolver.resolve("{{step_1.result.success}}", ctx) is True
    assert resolver.resolve("{{step_1.result}}", ctx) == {"x": 5, "success": True, "tags": ["a", "b"]}


def test_embedded_token_interpolates():
    assert resolver.resolve("char_{{input.name}}", make_context()) == "char_Thorin"


def test_embedded_token_uses_json_text():
    ctx = make_context()
    assert resolver.resolve("ok={{step_1.result.success}}", ctx) == "ok=true"
    assert resolver.resolve("tags={{step_1.result.tags}}", ctx) == 'tags=["a", "b"]'
    assert resolver.resolve("missing=[{{input.nope}}]", ctx) == "missing=[]"


def test_unknown_path_resolves_to_none():
    ctx = make_context()
    assert resolver.resolve("{{step_9.missing}}", ctx) is None
    assert resolver.resolve("{{step_1.result.nothing.deeper}}", ctx) is None


def test_array_indices():
    ctx = make_context()
    assert resolver.resolve("{{step_2.characters[1].name}}", ctx) == "Balin"
    assert resolver.resolve("{{step_2.characters.0.name}}", ctx) == "Gimli"
    assert resolver.resolve("{{step_2.characters[7].name}}", ctx) is None


def test_step_prefix_reaches_plain_step_id():
    assert resolver.resolve("{{step_3.ok}}", make_context()) is True


def test_env_and_context_namespaces():
    ctx = make_context()
    assert resolver.resolve("{{env.region}}", ctx) == "north"
    assert resolver.resolve("{{context.user_id}}", ctx) == "admin"


def test_whitespace_inside_token():
    assert resolver.resolve("{{ input.name }}", make_context()) == "Thorin"


def test_nested_structures_are_walked():
    template = {
        "body": {"message": "{{input.message}}", "count": "{{step_1.result.x}}"},
        "list": ["{{input.name}}", 7, None, False],
    }
    resolved = resolver.resolve(template, make_context())
    assert resolved == {
        "body": {"message": "I attack the goblin", "count": 5},
        "list": ["Thorin", 7, None, False],
    }


def test_resolution_does_not_touch_template():
    template = {"a": "{{input.name}}"}
    resolver.resolve(template, make_context())
    assert template == {"a": "{{input.name}}"}


def test_split_path():
    assert split_path("step_2.characters[0].name") == ["step_2", "characters", 0, "name"]
    assert split_path("grid[1][2]") == ["grid", 1, 2]


def test_get_value_by_path():
    data = {"a": [{"b": 1}]}
    assert get_value_by_path(data, "a[0].b") == 1
    assert get_value_by_path(data, "a.x") is None
    assert get_value_by_path(None, "a") is None


def test_find_malformed_templates():
    value = {
        "ok": "{{input.name}}",
        "empty": "{{ }}",
        "open": "{{input.name",
        "nested": ["fine", "{% if input.name %}never closed"],
    }
    assert sorted(find_malformed_templates(value)) == sorted(
        ["{{ }}", "{{input.name", "{% if input.name %}never closed"]
    )


def test_single_expression():
    assert single_expression("{{ step_1.result }}") == " step_1.result "
    assert single_expression("char_{{input.name}}") is None
    assert single_expression("{{input.a}}{{input.b}}") is None
    assert single_expression("plain") is None


def test_string_values_keep_their_type():
    ctx = ExecutionContext(input={"count": "5", "flag": "True"})
    assert resolver.resolve("{{input.count}}", ctx) == "5"
    assert resolver.resolve("{{input.flag}}", ctx) == "True"


def test_fields_named_like_dict_methods():
    ctx = ExecutionContext(steps={"step_1": {"items": ["sword"], "keys": 2}})
    assert resolver.resolve("{{step_1.items}}", ctx) == ["sword"]
    assert resolver.resolve("{{step_1.keys}}", ctx) == 2
    assert resolver.resolve("{{step_1.values}}", ctx) is None


def test_filters_are_available():
    ctx = make_context()
    assert resolver.resolve("{{ input.name | upper }}", ctx) == "THORIN"
    assert resolver.resolve("{{ input.nope | default('stranger') }}", ctx) == "stranger"


def test_failing_expression_resolves_to_none():
    assert resolver.resolve("{{ input.name - 1 }}", make_context()) is None


def test_text_is_kept_around_expressions():
    assert resolver.resolve("Hello {{input.name}}\n", make_context()) == "Hello Thorin\n"
