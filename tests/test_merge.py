"""
Tests for deep_merge
"""

from ai_controller.chains.merge import deep_merge


def test_nested_dicts_merge_key_by_key():
    existing = {"meta_data": {"owner": "admin", "tags": {"a": 1}}, "name": "x"}
    incoming = {"meta_data": {"tags": {"b": 2}}}
    assert deep_merge(existing, incoming) == {
        "meta_data": {"owner": "admin", "tags": {"a": 1, "b": 2}},
        "name": "x",
    }


def test_lists_are_replaced_wholesale():
    existing = {"steps": [{"id": "a"}, {"id": "b"}]}
    incoming = {"steps": [{"id": "c"}]}
    assert deep_merge(existing, incoming) == {"steps": [{"id": "c"}]}


def test_scalars_and_type_changes_replace():
    assert deep_merge({"a": 1}, {"a": "one"}) == {"a": "one"}
    assert deep_merge({"a": {"x": 1}}, {"a": None}) == {"a": None}
    assert deep_merge({"a": 1}, {"a": {"x": 1}}) == {"a": {"x": 1}}


def test_new_keys_are_added():
    assert deep_merge({"a": 1}, {"b": 2}) == {"a": 1, "b": 2}


def test_inputs_are_not_mutated():
    existing = {"a": {"x": [1]}}
    incoming = {"a": {"y": [2]}}
    merged = deep_merge(existing, incoming)
    merged["a"]["x"].append(9)
    merged["a"]["y"].append(9)
    assert existing == {"a": {"x": [1]}}
    assert incoming == {"a": {"y": [2]}}
