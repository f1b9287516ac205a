"""Tests for the destroy engine."""

import logging

import pytest

from cairn.destroy import destroy
from cairn.errors import CairnError, DestroyError, ProviderNotFoundError
from cairn.resource import PROVIDERS, register_dynamic_resource, resource
from cairn.scope import nested
from cairn.types import Event

CHAIN = ("test", "test-app")


@pytest.fixture
def deleted():
    return []


@pytest.fixture
def fragile(deleted):
    """Provider whose delete fails when props["fail_delete"] is set."""

    @resource("test::Fragile")
    async def Fragile(ctx, resource_id, props):
        if ctx.event is Event.DELETE:
            if props.get("fail_delete"):
                raise RuntimeError(f"cannot delete {resource_id}")
            deleted.append(ctx.fqn)
            return ctx.destroy()
        return ctx.create(name=resource_id)

    return Fragile


class TestDestroyResource:
    """Destroying single resources."""

    @pytest.mark.asyncio
    async def test_destroy_output(self, make_app, thing, calls, memory_storage):
        async with make_app() as root:
            output = await thing("bucket", name="a")
            await destroy(output)
            assert await root.state.get("bucket") is None

        assert calls[-1]["event"] is Event.DELETE
        assert calls[-1]["output"]["generation"] == output["generation"]
        assert calls[-1]["props"] == {"name": "a"}

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self, make_app, thing, calls):
        async with make_app():
            output = await thing("bucket", name="a")
            await destroy(output)
            await destroy(output)

        assert [call["event"] for call in calls] == [Event.CREATE, Event.DELETE]

    @pytest.mark.asyncio
    async def test_destroy_pending_resource(self, make_app, thing, calls):
        async with make_app() as root:
            await thing("bucket", name="a")
            await destroy(root.resources["bucket"])
            assert await root.state.get("bucket") is None

    @pytest.mark.asyncio
    async def test_destroy_nothing(self):
        await destroy(None)

    @pytest.mark.asyncio
    async def test_destroy_unsupported(self):
        with pytest.raises(TypeError):
            await destroy({"name": "not a resource"})
        with pytest.raises(TypeError):
            await destroy(42)

    @pytest.mark.asyncio
    async def test_missing_provider(self, make_app, thing):
        async with make_app() as root:
            output = await thing("bucket", name="a")
            PROVIDERS.pop("test::Thing")
            with pytest.raises(ProviderNotFoundError):
                await destroy(output)
            assert await root.state.get("bucket") is not None

    @pytest.mark.asyncio
    async def test_dynamic_provider(self, make_app, thing, calls):
        async with make_app():
            output = await thing("bucket", name="a")
            provider = PROVIDERS.pop("test::Thing")
            register_dynamic_resource(lambda kind: provider if kind == "test::Thing" else None)
            await destroy(output)

        assert calls[-1]["event"] is Event.DELETE

    @pytest.mark.asyncio
    async def test_missing_destroy_result_warns(self, make_app, caplog):
        @resource("test::Sloppy")
        async def Sloppy(ctx, resource_id, props):
            return None if ctx.event is Event.DELETE else ctx.create()

        with caplog.at_level(logging.WARNING, logger="cairn.destroy"):
            async with make_app() as root:
                output = await Sloppy("x")
                await destroy(output)
                assert await root.state.get("x") is None

        assert "did not return ctx.destroy()" in caplog.text

    @pytest.mark.asyncio
    async def test_destroy_result_on_create_is_rejected(self, make_app):
        @resource("test::Confused")
        async def Confused(ctx, resource_id, props):
            return ctx.destroy()

        async with make_app():
            with pytest.raises(CairnError):
                await Confused("x")


class TestDestroyScope:
    """Cascading destroy of a whole scope."""

    @pytest.mark.asyncio
    async def test_sequential_order(self, make_app, fragile, deleted):
        async with make_app() as root:
            for name in ("a", "b", "c", "d"):
                await fragile(name)
            await destroy(root)

        assert deleted == [f"test/test-app/{name}" for name in ("d", "c", "b", "a")]

    @pytest.mark.asyncio
    async def test_cascade_into_nested_scopes(self, make_app, fragile, deleted, memory_storage):
        async with make_app():
            await fragile("first")
            async with nested("backend"):
                await fragile("db")
                async with nested("cache"):
                    await fragile("redis")

        async with make_app(phase="destroy"):
            pass

        assert deleted == [
            "test/test-app/backend/cache/redis",
            "test/test-app/backend/db",
            "test/test-app/first",
        ]
        assert memory_storage == {}

    @pytest.mark.asyncio
    async def test_parallel_deletes_children_first(self, make_app, fragile, deleted):
        @resource("test::Owner")
        async def Owner(ctx, resource_id, props):
            if ctx.event is Event.DELETE:
                deleted.append(ctx.fqn)
                return ctx.destroy()
            await fragile("child")
            return ctx.create()

        async with make_app() as root:
            await Owner("owner")
            await fragile("sibling")
            await destroy(root, strategy="parallel")

        assert set(deleted) == {
            "test/test-app/owner/child",
            "test/test-app/owner",
            "test/test-app/sibling",
        }
        assert deleted.index("test/test-app/owner/child") < deleted.index("test/test-app/owner")

    @pytest.mark.asyncio
    async def test_fail_fast(self, make_app, fragile, deleted, memory_storage):
        async with make_app() as root:
            await fragile("a")
            await fragile("b", fail_delete=True)
            await fragile("c")
            with pytest.raises(RuntimeError, match="cannot delete b"):
                await destroy(root)

        assert deleted == ["test/test-app/c"]
        assert set(memory_storage[CHAIN]) == {"a", "b"}

    @pytest.mark.asyncio
    async def test_best_effort(self, make_app, fragile, deleted, memory_storage):
        async with make_app() as root:
            await fragile("a")
            await fragile("b", fail_delete=True)
            await fragile("c")
            with pytest.raises(DestroyError) as exc_info:
                await destroy(root, best_effort=True)

        error = exc_info.value
        assert error.count == 1
        assert isinstance(error.first, RuntimeError)
        assert "cannot delete b" in str(error)
        assert deleted == ["test/test-app/c", "test/test-app/a"]
        assert set(memory_storage[CHAIN]) == {"b"}

    @pytest.mark.asyncio
    async def test_best_effort_from_scope(self, make_app, fragile, deleted):
        async with make_app(best_effort=True) as root:
            await fragile("a", fail_delete=True)
            await fragile("b", fail_delete=True)
            with pytest.raises(DestroyError) as exc_info:
                await destroy(root)

        assert exc_info.value.count == 2

    @pytest.mark.asyncio
    async def test_best_effort_parallel(self, make_app, fragile, deleted):
        async with make_app() as root:
            await fragile("a", fail_delete=True)
            await fragile("b")
            with pytest.raises(DestroyError):
                await destroy(root, strategy="parallel", best_effort=True)

        assert deleted == ["test/test-app/b"]
