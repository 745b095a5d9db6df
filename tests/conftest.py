from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from oneshot_relay.config import Settings
from oneshot_relay.main import create_app

API_KEY = "test-key"
DOMAIN = "relay.test"
MAX_FILE_SIZE = 1024


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        api_key=API_KEY,
        domain=DOMAIN,
        upload_dir=tmp_path / "uploads",
        max_file_size=MAX_FILE_SIZE,
        cleanup_delay_seconds=0,
    )


@pytest.fixture()
def app(settings):
    return create_app(settings)


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def wait_for_cleanup(app, client):
    def _wait() -> None:
        client.portal.call(app.state.cleanup.drain)

    return _wait


@pytest.fixture()
def stored_files(settings):
    def _list() -> list[str]:
        return sorted(p.name for p in settings.upload_dir.iterdir())

    return _list
