# tests/test_api.py

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import create_engine

from tasks_app.errors import GENERIC_ERROR_MESSAGE
from tasks_app.main import app
from tasks_app.models import utcnow


def _predefined(client) -> dict[str, dict]:
    return {t["name"]: t for t in client.get("/api/tags").json() if t["is_predefined"]}


def test_health(client):
    assert client.get("/api/health").json() == {"status": "healthy"}


def test_startup_creates_predefined_tags(client):
    tags = _predefined(client)
    assert set(tags) == {"done", "due"}
    assert tags["done"]["color"] == "#4CAF50"
    assert tags["due"]["color"] == "#F44336"


def test_create_and_fetch_task_with_tags(client):
    a = client.post("/api/tags", json={"name": "A"}).json()
    b = client.post("/api/tags", json={"name": "B", "color": "#123456"}).json()

    resp = client.post("/api/tasks", json={"title": "Plan", "tags": [a["id"], str(b["id"]), "garbage"]})
    assert resp.status_code == 201

    fetched = client.get(f"/api/tasks/{resp.json()['id']}").json()
    assert {t["id"] for t in fetched["tags"]} == {a["id"], b["id"]}
    assert {t["name"]: t["color"] for t in fetched["tags"]} == {"A": "#808080", "B": "#123456"}


def test_overdue_task_is_tagged_due(client):
    due = (utcnow() - timedelta(hours=1)).isoformat()
    task = client.post("/api/tasks", json={"title": "Late", "due_date": due}).json()
    assert [t["name"] for t in task["tags"]] == ["due"]

    done = client.put(f"/api/tasks/{task['id']}", json={"completed": True}).json()
    assert [t["name"] for t in done["tags"]] == ["done"]


def test_timezone_aware_due_date_is_accepted(client):
    task = client.post("/api/tasks", json={"title": "tz", "due_date": "2999-01-01T10:00:00+02:00"}).json()
    assert task["due_date"] == "2999-01-01T08:00:00+00:00"


def test_task_validation_errors_are_field_level(client):
    resp = client.post("/api/tasks", json={"title": "   ", "due_date": "not a date"})
    assert resp.status_code == 400

    body = resp.json()
    assert body["code"] == "VALIDATION_ERROR"
    fields = {e["field"] for e in body["errors"]}
    assert {"title", "due_date"} <= fields


def test_missing_task_is_404(client):
    resp = client.get("/api/tasks/999")
    assert resp.status_code == 404
    assert resp.json()["message"] == "Task not found"


def test_delete_task(client):
    task = client.post("/api/tasks", json={"title": "gone"}).json()
    assert client.delete(f"/api/tasks/{task['id']}").json() == {"message": "Task deleted successfully"}
    assert client.get(f"/api/tasks/{task['id']}").status_code == 404


def test_duplicate_tag_is_409(client):
    assert client.post("/api/tags", json={"name": "work"}).status_code == 201
    resp = client.post("/api/tags", json={"name": "work"})
    assert resp.status_code == 409
    assert resp.json()["message"] == "Tag with this name already exists"


def test_predefined_tags_are_forbidden(client):
    done = _predefined(client)["done"]

    put = client.put(f"/api/tags/{done['id']}", json={"name": "finished"})
    assert put.status_code == 403
    assert put.json()["message"] == "Cannot modify predefined tags"

    delete = client.delete(f"/api/tags/{done['id']}")
    assert delete.status_code == 403
    assert delete.json()["message"] == "Cannot delete predefined tags"

    assert client.get(f"/api/tags/{done['id']}").json()["name"] == "done"


def test_user_tag_update_delete_and_usage(client):
    tag = client.post("/api/tags", json={"name": "home"}).json()
    client.post("/api/tasks", json={"title": "Dishes", "tags": [tag["id"]]})
    assert client.get(f"/api/tags/{tag['id']}/usage").json() == {"count": 1}

    renamed = client.put(f"/api/tags/{tag['id']}", json={"name": "house", "color": "#00FF00"}).json()
    assert (renamed["name"], renamed["color"]) == ("house", "#00FF00")

    assert client.delete(f"/api/tags/{tag['id']}").json() == {"message": "Tag deleted successfully"}
    assert client.get(f"/api/tags/{tag['id']}/usage").json() == {"count": 0}


def test_tab_crud_and_filtered_listing(client):
    work = client.post("/api/tags", json={"name": "work"}).json()
    urgent = client.post("/api/tags", json={"name": "urgent"}).json()
    client.post("/api/tasks", json={"title": "T1", "tags": [work["id"]]})
    client.post("/api/tasks", json={"title": "T2"})
    client.post("/api/tasks", json={"title": "T3", "tags": [work["id"], urgent["id"]]})

    resp = client.post("/api/tabs", json={"name": "Focus", "filter_tags": ["work", "urgent"], "filter_mode": "AND"})
    assert resp.status_code == 201
    tab = resp.json()

    titles = [t["title"] for t in client.get("/api/tasks", params={"tab_id": tab["id"]}).json()]
    assert titles == ["T3"]

    client.put(f"/api/tabs/{tab['id']}", json={"filter_mode": "OR"})
    titles = [t["title"] for t in client.get("/api/tasks", params={"tab_id": tab["id"]}).json()]
    assert sorted(titles) == ["T1", "T3"]

    assert [t["name"] for t in client.get("/api/tabs").json()] == ["Focus"]
    assert client.delete(f"/api/tabs/{tab['id']}").json() == {"message": "Tab deleted successfully"}
    assert client.get(f"/api/tabs/{tab['id']}").status_code == 404


def test_tab_rejects_unknown_enum_values(client):
    resp = client.post("/api/tabs", json={"name": "Bad", "sort_by": "title"})
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "sort_by"


def test_duplicate_tab_is_409(client):
    client.post("/api/tabs", json={"name": "Inbox"})
    assert client.post("/api/tabs", json={"name": "Inbox"}).status_code == 409


def test_sort_query_orders_tasks(client):
    client.post("/api/tasks", json={"title": "june", "due_date": "2999-06-01T00:00:00"})
    client.post("/api/tasks", json={"title": "january", "due_date": "2999-01-01T00:00:00"})

    asc = client.get("/api/tasks", params={"sort_by": "dueDate", "sort_order": "asc"}).json()
    desc = client.get("/api/tasks", params={"sort_by": "dueDate", "sort_order": "desc"}).json()

    assert [t["title"] for t in asc] == ["january", "june"]
    assert [t["title"] for t in desc] == ["june", "january"]


def test_unexpected_errors_are_opaque(client, monkeypatch):
    def boom(session):
        raise RuntimeError("database password is hunter2")

    monkeypatch.setattr("tasks_app.main.list_tags", boom)
    resp = client.get("/api/tags")

    assert resp.status_code == 500
    assert resp.json()["message"] == GENERIC_ERROR_MESSAGE
    assert "hunter2" not in resp.text


def test_cors_allows_configured_origin_only(client):
    allowed = client.get("/api/health", headers={"Origin": "http://localhost:3000"})
    denied = client.get("/api/health", headers={"Origin": "http://evil.example"})

    assert allowed.headers.get("access-control-allow-origin") == "http://localhost:3000"
    assert "access-control-allow-origin" not in denied.headers


def test_oversized_tag_ids_are_dropped(client):
    tag = client.post("/api/tags", json={"name": "real"}).json()
    resp = client.post(
        "/api/tasks",
        json={"title": "x", "tags": ["99999999999999999999999", 2**64, tag["id"]]},
    )

    assert resp.status_code == 201
    assert [t["name"] for t in resp.json()["tags"]] == ["real"]


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/api/tasks/99999999999999999999999"),
        ("delete", "/api/tasks/99999999999999999999999"),
        ("get", "/api/tags/99999999999999999999999"),
        ("delete", "/api/tags/99999999999999999999999"),
        ("get", "/api/tabs/99999999999999999999999"),
        ("get", "/api/tasks?tab_id=99999999999999999999999"),
    ],
)
def test_oversized_path_ids_are_not_found(client, method, path):
    resp = getattr(client, method)(path)
    assert resp.status_code == 404


def test_oversized_tag_usage_is_zero(client):
    assert client.get("/api/tags/99999999999999999999999/usage").json() == {"count": 0}


def _find_system_exit(exc: BaseException) -> SystemExit | None:
    # anyio may wrap the lifespan failure in an exception group or chain it.
    pending = [exc]
    seen = set()
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, SystemExit):
            return current
        pending.extend(getattr(current, "exceptions", ()))
        pending.extend([current.__cause__, current.__context__])
    return None


def test_unreachable_store_at_startup_exits(tmp_path):
    unreachable = create_engine(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'tasks.db'}")
    original = app.state.engine
    app.state.engine = unreachable
    try:
        with pytest.raises(BaseException) as exc_info:
            with TestClient(app):
                pass
    finally:
        app.state.engine = original
        unreachable.dispose()

    system_exit = _find_system_exit(exc_info.value)
    assert system_exit is not None
    assert system_exit.code == 1
