import time

import pytest

from conftest import CountingStore, FakeBackend, make_png
from ecomatrix.models import to_data_url
from ecomatrix.server import create_app


@pytest.fixture
def app_and_backend():
    backend = FakeBackend()
    app = create_app(backend=backend, store=CountingStore())
    app.config["ENGINE"].orchestrator.log.echo = False
    yield app, backend
    app.config["ENGINE"].stop()


def wait_until_idle(client, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        state = client.get("/api/state").get_json()
        if not state["isGenerating"] and not state["isEditing"] and state["pageCount"]:
            return state
        time.sleep(0.02)
    raise AssertionError("engine never settled")


def test_prompt_and_character_round_trip(app_and_backend) -> None:
    app, _ = app_and_backend
    client = app.test_client()

    client.post("/api/prompt", json={"prompt": "Bike lanes for bees"})
    created = client.post("/api/characters", json={"name": "Maya", "type": "Hero"}).get_json()
    rejected = client.post("/api/characters", json={"name": " "})
    state = client.get("/api/state").get_json()

    assert state["prompt"] == "Bike lanes for bees"
    assert [c["name"] for c in state["characters"]] == ["Maya"]
    assert rejected.status_code == 400

    client.delete(f"/api/characters/{created['id']}")
    assert client.get("/api/state").get_json()["characters"] == []


def test_generate_strip_then_fetch_page(app_and_backend) -> None:
    app, backend = app_and_backend
    client = app.test_client()
    client.post("/api/prompt", json={"prompt": "Wind turbines"})

    assert client.post("/api/generate", json={"mode": "strip"}).get_json() == {"started": True}
    state = wait_until_idle(client)

    assert state["pageCount"] == 1
    assert state["history"] == ["Wind turbines"]
    page = client.get("/api/page/0.png")
    assert page.status_code == 200
    assert page.data.startswith(b"\x89PNG")
    assert client.get("/api/page/3.png").status_code == 404
    assert client.get("/api/export/webcomic").status_code == 400


def test_unknown_mode_and_history_routes(app_and_backend) -> None:
    app, _ = app_and_backend
    client = app.test_client()

    assert client.post("/api/generate", json={"mode": "poster"}).status_code == 400
    loaded = client.post("/api/history/load", json={"prompt": "Old idea"}).get_json()
    assert loaded == {"prompt": "Old idea"}
    assert client.delete("/api/history").get_json() == {"history": []}


def test_invalid_payloads_are_rejected(app_and_backend) -> None:
    app, backend = app_and_backend
    client = app.test_client()

    assert client.post("/api/edit", json={"instruction": "Snow", "page": "two"}).status_code == 400
    assert client.post("/api/preset", json={"preset": "night", "page": [1]}).status_code == 400
    assert client.post("/api/page", json={"page": "last"}).status_code == 400
    assert client.post("/api/generate", json={"mode": "strip", "style": {"applyStyle": "sometimes"}}
                       ).status_code == 400
    assert client.post("/api/characters", json={"name": "Maya", "type": "Wizard"}).status_code == 400
    assert client.post("/api/characters/face", json={"image": "not-a-url"}).status_code == 400
    assert client.post("/api/theme", json={"theme": "sepia"}).status_code == 400
    assert backend.calls == []


def test_numeric_page_strings_are_coerced(app_and_backend) -> None:
    app, _ = app_and_backend
    client = app.test_client()

    assert client.post("/api/page", json={"page": "0"}).get_json() == {"currentPage": 0}


def test_theme_route_persists_choice(app_and_backend) -> None:
    app, _ = app_and_backend
    client = app.test_client()

    assert client.post("/api/theme", json={"theme": "dark"}).get_json() == {"theme": "dark"}
    assert client.get("/api/state").get_json()["theme"] == "dark"


def test_face_route_fills_character_draft(app_and_backend) -> None:
    app, backend = app_and_backend
    client = app.test_client()
    session = app.config["ENGINE"].session

    resp = client.post("/api/characters/face", json={"image": to_data_url(make_png())})

    assert resp.get_json() == {"started": True}
    deadline = time.monotonic() + 5
    while session.registry.draft.appearance != "Curly red hair and round glasses.":
        assert time.monotonic() < deadline
        time.sleep(0.02)
    assert backend.count("describe_image") == 1
