"""
API tests using the FastAPI test client with stubbed modules
"""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ai_controller.config import ControllerSettings
from ai_controller.main import create_app

from conftest import MODULE_URLS

CHAINS_DIR = Path(__file__).parent.parent / "chains"


def intent_step(step_id="step_1", **extra):
    return {
        "id": step_id,
        "module": "intent",
        "endpoint": "/interpret",
        "method": "POST",
        "body": {"message": "{{input.message}}"},
        **extra,
    }


@pytest.fixture
def settings(tmp_path):
    return ControllerSettings(
        database_url="sqlite://",
        module_urls=MODULE_URLS,
        max_routing_jumps=3,
        execution_log_dir=tmp_path / "logs",
    )


@pytest.fixture
def client(settings, stub):
    app = create_app(settings, transport=stub.transport())
    with TestClient(app) as client:
        yield client


def create_chain(client, steps, user_id="admin", name="Test chain", **extra):
    response = client.post("/chain", json={"userId": user_id, "name": name, "steps": steps, **extra})
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["service"] == "ai-controller"
    assert "timestamp" in body


def test_create_and_get_chain(client):
    routing = [{"condition": {"sourceStep": "step_1", "field": "done", "operator": "exists"}, "action": "stop_chain"}]
    chain = create_chain(client, [intent_step(conditionalRouting=routing)], description="Classify")

    response = client.get(f"/chain/{chain['id']}", params={"userId": "admin"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["name"] == "Test chain"
    assert data["description"] == "Classify"
    assert data["steps"][0]["conditionalRouting"][0]["condition"]["sourceStep"] == "step_1"


def test_get_chain_of_other_user_is_not_found(client):
    chain = create_chain(client, [intent_step()], user_id="alice")

    assert client.get(f"/chain/{chain['id']}", params={"userId": "bob"}).status_code == 404
    assert client.get("/chain/999", params={"userId": "alice"}).status_code == 404


def test_get_chain_requires_caller(client):
    chain = create_chain(client, [intent_step()])
    assert client.get(f"/chain/{chain['id']}").status_code == 422


def test_create_invalid_chain(client):
    response = client.post("/chain", json={"userId": "admin", "name": "Empty", "steps": []})
    assert response.status_code == 400
    assert response.json()["detail"]["success"] is False

    response = client.post("/chain", json={
        "userId": "admin",
        "name": "Duplicates",
        "steps": [intent_step("a"), intent_step("a")],
    })
    assert response.status_code == 400
    assert any("Duplicate" in e for e in response.json()["detail"]["errors"])


def test_create_chain_body_errors(client):
    response = client.post("/chain", json={"name": "No owner", "steps": [intent_step()]})
    assert response.status_code == 422


def test_list_chains(client):
    create_chain(client, [intent_step()], name="One")
    create_chain(client, [intent_step()], name="Two")
    create_chain(client, [intent_step()], name="Else", user_id="bob")

    response = client.get("/chains/admin")

    assert response.status_code == 200
    assert sorted(c["name"] for c in response.json()["data"]) == ["One", "Two"]


def test_chain_summary(client):
    chain = create_chain(client, [
        intent_step("a"),
        intent_step("b", parallel=True),
        intent_step("c", parallel=True),
    ])

    response = client.get(f"/chain/{chain['id']}/summary", params={"userId": "admin"})

    assert response.status_code == 200
    summary = response.json()["data"]
    assert summary["groups"] == [["a"], ["b", "c"]]
    assert summary["total_steps"] == 3


def test_update_chain(client):
    chain = create_chain(client, [intent_step("a"), intent_step("b")], meta_data={"owner": "gm"})

    response = client.patch(
        f"/chain/{chain['id']}",
        params={"userId": "admin"},
        json={"description": "Updated", "meta_data": {"trigger_pipeline": True}},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["description"] == "Updated"
    assert data["meta_data"] == {"owner": "gm", "trigger_pipeline": True}
    assert [s["id"] for s in data["steps"]] == ["a", "b"]


def test_invalid_update_is_rejected(client):
    chain = create_chain(client, [intent_step("a")])

    response = client.patch(
        f"/chain/{chain['id']}",
        params={"userId": "admin"},
        json={"steps": [intent_step("x"), intent_step("x")]},
    )

    assert response.status_code == 400
    stored = client.get(f"/chain/{chain['id']}", params={"userId": "admin"}).json()["data"]
    assert [s["id"] for s in stored["steps"]] == ["a"]


def test_update_other_users_chain(client):
    chain = create_chain(client, [intent_step()], user_id="alice")
    response = client.patch(f"/chain/{chain['id']}", params={"userId": "bob"}, json={"name": "Mine"})
    assert response.status_code == 404


def test_delete_chain(client):
    chain = create_chain(client, [intent_step()])

    assert client.delete(f"/chain/{chain['id']}", params={"userId": "bob"}).status_code == 404
    assert client.delete(f"/chain/{chain['id']}", params={"userId": "admin"}).status_code == 200
    assert client.get(f"/chain/{chain['id']}", params={"userId": "admin"}).status_code == 404


def test_execute_saved_chain(client, stub):
    stub.add("intent", "POST", "/interpret", json={"result": {"primaryIntent": {"type": "attack"}}})
    stub.add("character", "GET", "/character/admin/Thorin", json={"name": "Thorin", "hp": 12})
    chain = create_chain(client, [
        intent_step(),
        {
            "id": "step_2",
            "module": "character",
            "endpoint": "/character/:userId/:name",
            "params": {"userId": "{{input.userId}}", "name": "{{input.characterName}}"},
        },
    ], output_template={"intent": "{{step_1.result.primaryIntent.type}}", "character": "{{step_2}}"})

    response = client.post(
        f"/execute/{chain['id']}",
        params={"userId": "admin"},
        json={"input": {"message": "I attack", "userId": "admin", "characterName": "Thorin"}},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    result = body["data"]
    assert result["output"] == {"intent": "attack", "character": {"name": "Thorin", "hp": 12}}
    assert [s["step_id"] for s in result["steps"]] == ["step_1", "step_2"]
    assert result["id"] is not None

    history = client.get(f"/chain/{chain['id']}/executions", params={"userId": "admin"}).json()["data"]
    assert len(history) == 1
    assert history[0]["id"] == result["id"]


def test_execute_unknown_chain(client):
    response = client.post("/execute/999", params={"userId": "admin"}, json={"input": {}})
    assert response.status_code == 404


def test_failed_step_is_not_an_http_error(client, stub):
    stub.add("intent", "POST", "/interpret", status=500, json={"error": "boom"})
    chain = create_chain(client, [intent_step()])

    response = client.post(f"/execute/{chain['id']}", params={"userId": "admin"}, json={"input": {"message": "hi"}})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["data"]["error_code"] == "step_failed"
    assert body["data"]["steps"][0]["status"] == 500


def test_routing_cycle_is_a_conflict(client, stub):
    stub.add("intent", "POST", "/interpret", json={"again": True})
    routing = [{
        "condition": {"sourceStep": "step_1", "field": "again", "operator": "equals", "value": True},
        "action": "jump_to_step",
        "target": "step_1",
    }]
    chain = create_chain(client, [intent_step(conditionalRouting=routing)])

    response = client.post(f"/execute/{chain['id']}", params={"userId": "admin"}, json={"input": {"message": "hi"}})

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["data"]["error_code"] == "routing_cycle"
    assert len(stub.calls_to("intent")) == 4

    # The failed run is still in the history
    history = client.get("/executions/admin").json()["data"]
    assert history[0]["error_code"] == "routing_cycle"


def test_execute_ad_hoc_chain(client, stub):
    stub.add("intent", "POST", "/interpret", json={"ok": True})

    response = client.post("/execute", json={
        "owner": "admin",
        "steps": [intent_step()],
        "input": {"message": "hello"},
    })

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["success"] is True
    assert data["chain_id"] is None
    assert data["chain_name"] == "Ad-hoc chain"
    assert stub.calls[0]["body"] == {"message": "hello"}


def test_ad_hoc_chain_errors(client, stub):
    response = client.post("/execute", json={"steps": [intent_step()]})
    assert response.status_code == 422

    response = client.post("/execute", json={"userId": "admin", "steps": [intent_step("a"), intent_step("a")]})
    assert response.status_code == 400
    assert response.json()["detail"]["data"]["error_code"] == "validation"

    response = client.post("/execute", json={"userId": "admin", "steps": [{"id": "a", "module": "weather"}]})
    assert response.status_code == 400
    assert stub.calls == []


def test_execution_history(client, stub):
    stub.add("intent", "POST", "/interpret", json={"ok": True})
    for _ in range(3):
        client.post("/execute", json={"userId": "admin", "steps": [intent_step()], "input": {"message": "x"}})
    client.post("/execute", json={"userId": "bob", "steps": [intent_step()], "input": {"message": "y"}})

    listed = client.get("/executions/admin").json()["data"]
    assert len(listed) == 3
    assert len(client.get("/executions/admin", params={"limit": 2}).json()["data"]) == 2
    assert len(client.get("/executions/admin", params={"limit": 0}).json()["data"]) == 1

    execution_id = listed[0]["id"]
    response = client.get(f"/execution/{execution_id}", params={"userId": "admin"})
    assert response.status_code == 200
    assert response.json()["data"]["input"] == {"message": "x"}
    assert client.get(f"/execution/{execution_id}", params={"userId": "bob"}).status_code == 404


def test_stats(client, stub):
    stub.add("intent", "POST", "/interpret", json={"ok": True})
    create_chain(client, [intent_step()])
    client.post("/execute", json={"userId": "admin", "steps": [intent_step()], "input": {"message": "x"}})

    stats = client.get("/stats").json()["data"]

    assert stats["total_chains"] == 1
    assert stats["total_executions"] == 1
    assert stats["successful_executions"] == 1
    assert stats["executions_by_module"] == [{"module": "intent", "count": 1}]


def test_modules(client):
    response = client.get("/modules")
    assert response.status_code == 200
    modules = response.json()["data"]
    assert {m["type"] for m in modules} == set(MODULE_URLS)
    intent = next(m for m in modules if m["type"] == "intent")
    assert intent["url"] == "http://intent.test"

    response = client.get("/modules/character")
    assert response.status_code == 200
    assert response.json()["data"]["port"] == 3031

    assert client.get("/modules/weather").status_code == 404


def test_modules_health(client, stub):
    for module in MODULE_URLS:
        stub.add(module, "GET", "/health", json={"status": "ok"})

    response = client.get("/modules/health")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"] == {module: True for module in MODULE_URLS}


def test_seeded_chains(settings, stub):
    settings.chain_seed_dir = CHAINS_DIR
    app = create_app(settings, transport=stub.transport())

    with TestClient(app) as client:
        names = sorted(c["name"] for c in client.get("/chains/admin").json()["data"])

    assert names == ["Get Full Character Context", "Process User Message"]
