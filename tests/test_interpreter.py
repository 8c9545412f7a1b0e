"""
Tests for chain parsing and validation
"""

from pathlib import Path

import pytest

from ai_controller.chains.interpreter import ChainInterpreter
from ai_controller.chains.models import RoutingAction, StepType
from ai_controller.exceptions import ChainValidationError, TemplateResolutionError

CHAINS_DIR = Path(__file__).parent.parent / "chains"

interpreter = ChainInterpreter()


def step(step_id, **extra):
    data = {"id": step_id, "module": "intent", "endpoint": "/interpret", "method": "POST"}
    data.update(extra)
    return data


def chain_data(steps, **extra):
    return {"user_id": "admin", "name": "Test chain", "steps": steps, **extra}


def test_load_from_dict():
    chain = interpreter.load_from_dict(chain_data([step("a"), step("b", body={"x": "{{a.y}}"})]))
    assert [s.id for s in chain.steps] == ["a", "b"]
    assert chain.steps[0].type == StepType.MODULE_CALL
    interpreter.validate(chain)


def test_plan_groups():
    chain = interpreter.load_from_dict(chain_data([
        step("a"),
        step("b", parallel=True),
        step("c", parallel=True),
        step("d"),
        step("e", parallel=True),
    ]))
    assert interpreter.plan_groups(chain) == [["a"], ["b", "c"], ["d"], ["e"]]


def test_unknown_module_is_rejected():
    with pytest.raises(ChainValidationError):
        interpreter.load_from_dict(chain_data([step("a", module="weather")]))


def test_module_call_needs_endpoint():
    with pytest.raises(ChainValidationError) as exc:
        interpreter.load_from_dict(chain_data([{"id": "a", "module": "intent"}]))
    assert "endpoint" in str(exc.value)


def test_chain_needs_steps():
    with pytest.raises(ChainValidationError):
        interpreter.load_from_dict(chain_data([]))


def test_duplicate_step_ids():
    chain = interpreter.load_from_dict(chain_data([step("a"), step("a")]))
    with pytest.raises(ChainValidationError) as exc:
        interpreter.validate(chain)
    assert any("Duplicate step id 'a'" in e for e in exc.value.errors)


def test_reserved_step_id():
    chain = interpreter.load_from_dict(chain_data([step("input")]))
    with pytest.raises(ChainValidationError):
        interpreter.validate(chain)


def test_unknown_jump_target():
    routing = [{
        "condition": {"sourceStep": "a", "field": "ok", "operator": "equals", "value": True},
        "action": "jump_to_step",
        "target": "missing",
    }]
    chain = interpreter.load_from_dict(chain_data([step("a", conditionalRouting=routing)]))
    with pytest.raises(ChainValidationError) as exc:
        interpreter.validate(chain)
    assert "Unknown jump target 'missing'" in str(exc.value)


def test_unknown_condition_source():
    condition = {"sourceStep": "ghost", "field": "ok", "operator": "exists"}
    chain = interpreter.load_from_dict(chain_data([step("a"), step("b", condition=condition)]))
    with pytest.raises(ChainValidationError):
        interpreter.validate(chain)


def test_condition_source_in_same_parallel_group():
    condition = {"sourceStep": "a", "field": "ok", "operator": "exists"}
    chain = interpreter.load_from_dict(chain_data([
        step("a", parallel=True),
        step("b", parallel=True, condition=condition),
    ]))
    with pytest.raises(ChainValidationError) as exc:
        interpreter.validate(chain)
    assert "not in an earlier group" in str(exc.value)


def test_condition_source_runs_later():
    condition = {"sourceStep": "b", "field": "ok", "operator": "exists"}
    chain = interpreter.load_from_dict(chain_data([step("a", condition=condition), step("b")]))
    with pytest.raises(ChainValidationError):
        interpreter.validate(chain)

    # A namespaced field without sourceStep is checked the same way
    condition = {"field": "step_a.ok", "operator": "exists"}
    chain = interpreter.load_from_dict(chain_data([step("a", condition=condition), step("b")]))
    errors = interpreter.collect_errors(chain)
    assert errors == ["Step 'a' condition source 'step_a' is not in an earlier group"]


def test_condition_source_in_earlier_group():
    chain = interpreter.load_from_dict(chain_data([
        step("a", parallel=True),
        step("b", parallel=True),
        step("c", condition={"sourceStep": "b", "field": "ok", "operator": "exists"}),
        step("d", condition={"sourceStep": "input", "field": "mode", "operator": "exists"}),
    ]))
    assert interpreter.collect_errors(chain) == []


def test_malformed_template():
    chain = interpreter.load_from_dict(chain_data([step("a", body={"message": "{{input.message"})]))
    with pytest.raises(TemplateResolutionError):
        interpreter.validate(chain)


def test_in_array_requires_array_value():
    routing = [{
        "condition": {"sourceStep": "a", "field": "intent", "operator": "in_array", "value": "attack"},
        "action": "stop_chain",
    }]
    chain = interpreter.load_from_dict(chain_data([step("a", conditionalRouting=routing)]))
    with pytest.raises(ChainValidationError) as exc:
        interpreter.validate(chain)
    assert "in_array" in str(exc.value)


def test_legacy_skip_to_step_action():
    routing = [{
        "condition": {"sourceStep": "a", "field": "ok", "operator": "equals", "value": "false"},
        "action": "skip_to_step",
        "target": "c",
    }]
    chain = interpreter.load_from_dict(chain_data([step("a", conditionalRouting=routing), step("b"), step("c")]))
    rule = chain.steps[0].conditional_routing[0]
    assert rule.action == RoutingAction.JUMP_TO_STEP
    interpreter.validate(chain)


def test_jump_to_chain_target_is_chain_id():
    routing = [{
        "condition": {"sourceStep": "a", "field": "ok", "operator": "exists"},
        "action": "jump_to_chain",
        "target": "12",
    }]
    chain = interpreter.load_from_dict(chain_data([step("a", conditionalRouting=routing)]))
    assert chain.steps[0].conditional_routing[0].target == 12

    routing[0]["target"] = "not-a-chain"
    with pytest.raises(ChainValidationError):
        interpreter.load_from_dict(chain_data([step("a", conditionalRouting=routing)]))


def test_chain_call_step_needs_chain_id():
    with pytest.raises(ChainValidationError):
        interpreter.load_from_dict(chain_data([{"id": "a", "type": "chain_call"}]))

    chain = interpreter.load_from_dict(chain_data([{"id": "a", "type": "chain_call", "chain_id": 4}]))
    assert chain.steps[0].chain_id == 4


def test_storage_form_keeps_camel_case():
    routing = [{
        "condition": {"sourceStep": "a", "field": "ok", "operator": "exists"},
        "action": "stop_chain",
    }]
    chain = interpreter.load_from_dict(chain_data([step("a", conditionalRouting=routing)]))
    stored = chain.steps_for_storage()[0]
    assert "conditionalRouting" in stored
    assert stored["conditionalRouting"][0]["condition"]["sourceStep"] == "a"


def test_execution_summary():
    routing = [{"condition": {"sourceStep": "a", "field": "ok", "operator": "exists"}, "action": "stop_chain"}]
    chain = interpreter.load_from_dict(chain_data([
        step("a", conditionalRouting=routing),
        step("b", parallel=True),
        step("c", parallel=True),
    ]))
    summary = interpreter.get_execution_summary(chain)
    assert summary["total_steps"] == 3
    assert summary["total_groups"] == 2
    assert summary["parallel_groups"] == [["b", "c"]]
    assert summary["routing_steps"] == ["a"]
    assert summary["valid"] is True


def test_load_from_yaml(tmp_path):
    path = tmp_path / "chain.yaml"
    path.write_text(
        "name: From YAML\n"
        "steps:\n"
        "  - id: step_1\n"
        "    module: character\n"
        "    endpoint: /character/:userId/:name\n"
        "    method: get\n"
    )
    chain = interpreter.load_from_yaml(path, user_id="admin")
    assert chain.user_id == "admin"
    assert chain.steps[0].method.value == "GET"


def test_load_from_yaml_errors(tmp_path):
    with pytest.raises(ChainValidationError):
        interpreter.load_from_yaml(tmp_path / "missing.yaml")

    broken = tmp_path / "broken.yaml"
    broken.write_text("name: [unclosed\n")
    with pytest.raises(ChainValidationError):
        interpreter.load_from_yaml(broken)


def test_discover_shipped_chains():
    chains = interpreter.discover_chains(CHAINS_DIR, "admin")
    names = sorted(c.name for c in chains)
    assert names == ["Get Full Character Context", "Process User Message"]
    assert all(c.user_id == "admin" for c in chains)


def test_discover_skips_invalid_files(tmp_path):
    (tmp_path / "good.yaml").write_text(
        "name: Good\nsteps:\n  - id: a\n    module: intent\n    endpoint: /interpret\n"
    )
    (tmp_path / "bad.yaml").write_text("name: Bad\nsteps: []\n")
    chains = interpreter.discover_chains(tmp_path, "admin")
    assert [c.name for c in chains] == ["Good"]
