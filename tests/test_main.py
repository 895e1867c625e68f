"""Tests for the FastAPI service endpoints."""

import time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from config import Settings, load_digest_config
from journal_digest import database


def _config(tmp_path, **overrides):
    values = {
        "notifier_backend": "log",
        "db_path": str(tmp_path / "test.db"),
        "cron_secret": "s3cret",
    }
    values.update(overrides)
    return load_digest_config(Settings(_env_file=None, **values))


@pytest.fixture
def client(tmp_path):
    import main

    config = _config(tmp_path)
    with patch("main.load_digest_config", return_value=config):
        with TestClient(main.app) as c:
            yield c, config


def _wait_for_finished_run(c, attempts: int = 50) -> dict:
    for _ in range(attempts):
        runs = c.get("/api/runs").json()
        if runs and runs[0]["status"] != "running" and c.get("/health").json()["state"] == "idle":
            return runs[0]
        time.sleep(0.05)
    raise AssertionError("digest run did not finish")


def test_health(client):
    c, _ = client
    body = c.get("/health").json()
    assert body["status"] == "ok"
    assert body["state"] == "idle"
    assert body["cadence"] == "0 0 9 ? * SUN"
    assert body["next_fire_time"] is not None


def test_cron_trigger_rejects_wrong_secret(client):
    c, _ = client
    assert c.get("/api/cron/digest", params={"secret": "nope"}).status_code == 403
    assert c.post("/api/cron/digest", headers={"Authorization": "Bearer nope"}).status_code == 403


def test_cron_trigger_without_configured_secret(tmp_path):
    import main

    config = _config(tmp_path, cron_secret="")
    with patch("main.load_digest_config", return_value=config):
        with TestClient(main.app) as c:
            resp = c.get("/api/cron/digest", params={"secret": "anything"})
    assert resp.status_code == 500


def test_cron_trigger_runs_digest(client):
    c, config = client
    user_id = database.create_user("kiran", "kiran@example.com", sentiment_analysis=True, db_path=config.db_path)
    database.add_entry(user_id, "Had a great day", db_path=config.db_path)

    resp = c.post("/api/cron/digest", headers={"Authorization": "Bearer s3cret"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "started"

    run = _wait_for_finished_run(c)
    assert run["status"] == "success"
    assert run["total_users"] == 1

    detail = c.get(f"/api/runs/{run['run_id']}").json()
    assert detail["outcomes"][0]["email"] == "kiran@example.com"
    assert detail["outcomes"][0]["sentiment"] == "HAPPY"


def test_cron_trigger_while_running(client):
    import main

    c, _ = client
    with patch.object(main._scheduler, "trigger", return_value=False):
        resp = c.get("/api/cron/digest", params={"secret": "s3cret"})
    assert resp.status_code == 409
    assert resp.json()["status"] == "already_running"


def test_unknown_run(client):
    c, _ = client
    resp = c.get("/api/runs/does-not-exist")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Run not found"}


def test_cancel_when_idle(client):
    c, _ = client
    resp = c.post("/api/cancel")
    assert resp.status_code == 409
    assert resp.json()["status"] == "idle"
