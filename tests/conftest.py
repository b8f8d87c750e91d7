from __future__ import annotations

import os
import socket
from typing import Any

import pytest
from fastapi.testclient import TestClient

from qaboard.config import Settings
from qaboard.main import create_app

ADMIN_PASSWORD = "secret"


class NetworkBlockedError(RuntimeError):
    pass


def _blocked(*_args: Any, **_kwargs: Any) -> Any:
    raise NetworkBlockedError(
        "Network access is disabled during tests. "
        "Mark the test with @pytest.mark.integration/@pytest.mark.network or set ALLOW_NETWORK=1."
    )


@pytest.fixture(autouse=True)
def _disable_network(monkeypatch: pytest.MonkeyPatch, request: pytest.FixtureRequest) -> None:
    """Prevent accidental outbound network calls in unit tests."""

    if os.getenv("ALLOW_NETWORK") == "1":
        return

    if request.node.get_closest_marker("integration") or request.node.get_closest_marker("network"):
        return

    monkeypatch.setattr(socket, "create_connection", _blocked)
    monkeypatch.setattr(socket, "getaddrinfo", _blocked)


class FakeGenerator:
    """Stands in for the reply generator; answers instantly and records prompts."""

    def __init__(self, answer: str = "A generated answer") -> None:
        self.answer = answer
        self.prompts: list[str] = []
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answer


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "admin_password": ADMIN_PASSWORD,
        "backends_config_path": "/nonexistent/backends.yaml",
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def make_client():
    """Build a started TestClient; lifespan runs so the board exists."""
    clients: list[TestClient] = []

    def _make(generator: FakeGenerator | None = None, **overrides: Any) -> TestClient:
        app = create_app(make_settings(**overrides), generator=generator or FakeGenerator())
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


def admin_headers(client: TestClient) -> dict[str, str]:
    resp = client.post("/admin/login", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}
