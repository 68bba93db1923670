"""Tests for the Sync Service HTTP endpoints."""

import dataclasses
import time

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, Mock

from shared.config import SyncSettings
from shared.db_operations import DeadLetterOperations
from services.notion_writer.rate_limit import ApiInvoker
from services.simplenote_listener.source import ChangeEventSource
from services.sync_service import main
from services.sync_service.pipeline import SyncPipeline


@pytest.fixture
def notion_client():
    client = Mock()
    client.pages = Mock()
    client.pages.create = AsyncMock(return_value={"id": "page1"})
    client.pages.update = AsyncMock(return_value={"id": "page1"})
    client.databases = Mock()
    client.databases.retrieve = AsyncMock(return_value={
        "properties": {"Name": {"type": "title"}}
    })
    client.request = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def settings(tmp_path):
    return SyncSettings(
        notion_token="secret_token",
        notion_database_id="db123",
        state_file=str(tmp_path / "sync_state.json"),
        debounce_delay=0.05,
        api_delay=0,
        shutdown_timeout=2.0,
    )


@pytest.fixture
def install_pipeline(monkeypatch, settings, notion_client):
    """Make the app start a pipeline backed by the mocked Notion client."""
    monkeypatch.setattr(main, "pipeline", None)
    monkeypatch.setattr(main, "supervisor", None)
    monkeypatch.setattr(main, "source_factory", None)

    def _install(dead_letters=None, **overrides):
        def _build():
            return SyncPipeline(
                dataclasses.replace(settings, **overrides),
                client=notion_client,
                invoker=ApiInvoker(sleep=AsyncMock()),
                dead_letters=dead_letters,
                exit_process=Mock()
            )
        monkeypatch.setattr(main, "build_pipeline", _build)
    return _install


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


class TestWithoutPipeline:
    """Endpoints before the lifespan has started the pipeline."""

    def test_health_reports_degraded(self, monkeypatch):
        monkeypatch.setattr(main, "pipeline", None)
        client = TestClient(main.app)

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["dependencies"]["pipeline"] == "down"

    def test_status_unavailable(self, monkeypatch):
        monkeypatch.setattr(main, "pipeline", None)
        client = TestClient(main.app)

        response = client.get("/status")

        assert response.status_code == 503


class TestSyncApi:
    """Endpoints with a running pipeline."""

    def test_root(self, install_pipeline):
        install_pipeline()
        with TestClient(main.app) as client:
            response = client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "Sync Service"

    def test_health_when_running(self, install_pipeline, notion_client):
        install_pipeline()
        with TestClient(main.app) as client:
            data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["dependencies"]["pipeline"] == "up"
        assert data["dependencies"]["change_feed"] == "down"
        notion_client.databases.retrieve.assert_awaited_once_with(database_id="db123")

    def test_ingest_change_syncs_note(self, install_pipeline, notion_client, settings):
        install_pipeline()
        with TestClient(main.app) as client:
            response = client.post("/internal/changes", json={
                "id": "note1",
                "content": "Groceries\nmilk",
                "tags": ["home"],
                "modificationDate": 1700000000.5
            })

            assert response.status_code == 202
            assert response.json() == {"note_id": "note1", "accepted": True}
            assert _wait_for(lambda: client.get("/status").json()["processed_actions"] == 1)

            status_data = client.get("/status").json()

        assert status_data["state"] == "running"
        assert status_data["mapped_notes"] == 1
        assert status_data["processed_actions"] == 1
        assert status_data["failed_actions"] == 0

        properties = notion_client.pages.create.call_args.kwargs["properties"]
        assert properties["Name"]["title"][0]["text"]["content"] == "Groceries"
        assert main.app.state.exit_code == 0
        notion_client.aclose.assert_awaited_once()

    def test_deleted_note_not_accepted(self, install_pipeline, notion_client):
        install_pipeline()
        with TestClient(main.app) as client:
            response = client.post("/internal/changes", json={"id": "note1", "deleted": True})

        assert response.status_code == 202
        assert response.json()["accepted"] is False
        notion_client.pages.create.assert_not_awaited()

    def test_pending_change_synced_on_shutdown(self, install_pipeline, notion_client, settings):
        # Longer than the test takes, so only the shutdown flush can fire it
        install_pipeline(debounce_delay=60.0)

        with TestClient(main.app) as client:
            client.post("/internal/changes", json={"id": "note1", "content": "late edit"})
            assert client.get("/status").json()["armed_changes"] == 1

        notion_client.pages.create.assert_awaited_once()
        assert main.app.state.exit_code == 0

    def test_invalid_change_rejected(self, install_pipeline):
        install_pipeline()
        with TestClient(main.app) as client:
            response = client.post("/internal/changes", json={"content": "no id"})

        assert response.status_code == 422

    def test_dead_letters_disabled(self, install_pipeline):
        install_pipeline()
        with TestClient(main.app) as client:
            response = client.get("/internal/dead-letters")

        assert response.status_code == 404

    def test_dead_letters_listed(self, install_pipeline, tmp_path):
        dead_letters = DeadLetterOperations(f"sqlite:///{tmp_path / 'dead_letters.db'}")
        dead_letters.create_tables()
        dead_letters.add_dead_letter("note1", "TransientError", "HTTP 502", notion_page_id="page1")
        dead_letters.add_dead_letter("note2", "PermanentError", "HTTP 403")
        install_pipeline(dead_letters=dead_letters)

        with TestClient(main.app) as client:
            everything = client.get("/internal/dead-letters").json()
            filtered = client.get("/internal/dead-letters", params={"note_id": "note1"}).json()

        assert {record["note_id"] for record in everything} == {"note1", "note2"}
        assert len(filtered) == 1
        assert filtered[0]["error_type"] == "TransientError"
        assert filtered[0]["notion_page_id"] == "page1"

    def test_registered_source_receives_app_id_and_token(self, install_pipeline, notion_client):
        install_pipeline(simperium_app_id="chalk-bump-f49", simperium_token="feed-token")
        opened = []

        class RecordingSource(ChangeEventSource):
            def __init__(self, app_id, token):
                self.app_id = app_id
                self.token = token
                self.listener = None
                self.stopped = False
                opened.append(self)

            async def start(self, listener):
                self.listener = listener

            async def stop(self):
                self.stopped = True

        main.register_source_factory(RecordingSource)

        with TestClient(main.app) as client:
            health = client.get("/health").json()
            # Sources deliver changes on the event loop thread
            client.portal.call(opened[0].listener.on_change, "note1", {"content": "from the feed"})
            assert _wait_for(lambda: client.get("/status").json()["processed_actions"] == 1)

        assert health["dependencies"]["change_feed"] == "up"
        assert (opened[0].app_id, opened[0].token) == ("chalk-bump-f49", "feed-token")
        assert opened[0].stopped
        notion_client.pages.create.assert_awaited_once()
