"""
Pytest configuration and fixtures for Cairn tests.
"""

import tempfile
from pathlib import Path

import pytest

from cairn.app import app
from cairn.resource import _DYNAMIC_RESOLVERS, PROVIDERS, resource
from cairn.scope import Scope
from cairn.settings import reload_settings
from cairn.state import InMemoryStateStore
from cairn.types import Event

PASSWORD = "test-password"


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, temp_dir):
    """Keep tests away from the developer's environment and working directory."""
    for name in ("CAIRN_PASSWORD", "SECRET_PASSPHRASE", "CAIRN_PHASE", "CAIRN_STAGE", "CAIRN_QUIET"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CAIRN_STATE_STORE", "memory")
    monkeypatch.setenv("CAIRN_STATE_DIR", str(temp_dir / "state"))
    monkeypatch.setenv("CAIRN_SQLITE_PATH", str(temp_dir / "state.sqlite"))
    reload_settings()
    yield
    monkeypatch.undo()
    reload_settings()


@pytest.fixture(autouse=True)
def isolated_providers():
    """Restore the provider registry after each test."""
    providers = dict(PROVIDERS)
    resolvers = list(_DYNAMIC_RESOLVERS)
    yield
    PROVIDERS.clear()
    PROVIDERS.update(providers)
    _DYNAMIC_RESOLVERS[:] = resolvers


@pytest.fixture
def memory_storage():
    """Shared backing dict of the in-memory state store."""
    return {}


@pytest.fixture
def scope(memory_storage):
    """A root scope with a password, backed by memory (not entered)."""
    return Scope(
        stage="test",
        password=PASSWORD,
        state_store=InMemoryStateStore.factory(memory_storage),
        quiet=True,
    )


@pytest.fixture
def make_app(memory_storage):
    """Open a root scope over the shared memory storage."""

    def _make(**overrides):
        options = {
            "stage": "test",
            "password": PASSWORD,
            "state_store": InMemoryStateStore.factory(memory_storage),
            "quiet": True,
        }
        options.update(overrides)
        return app("test-app", **options)

    return _make


@pytest.fixture
def calls():
    """Every handler invocation of the ``thing`` provider."""
    return []


@pytest.fixture
def thing(calls):
    """A provider recording its calls; props["replace"] triggers a replace."""

    @resource("test::Thing")
    async def Thing(ctx, resource_id, props):
        calls.append(
            {
                "event": ctx.event,
                "id": resource_id,
                "fqn": ctx.fqn,
                "props": props,
                "output": ctx.output,
            }
        )
        if ctx.event is Event.DELETE:
            return ctx.destroy()
        if props.get("fail"):
            raise RuntimeError(f"failed to apply {resource_id}")
        if ctx.event is Event.UPDATE and props.get("replace"):
            ctx.replace()
        return ctx.create(name=props.get("name"), generation=len(calls))

    return Thing
