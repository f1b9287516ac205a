"""Tests for tagged serialization."""

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone

import pytest
from pydantic import BaseModel, TypeAdapter

from cairn.errors import DecryptionError, MissingPasswordError, UniqueSymbolError
from cairn.scope import Scope
from cairn.secret import SALT_KEY, Secret
from cairn.serde import deserialize, serialize
from cairn.state import InMemoryStateStore
from cairn.symbols import Symbol


class Bucket(BaseModel):
    name: str
    public: bool = False


@dataclass
class Endpoint:
    host: str
    port: int


@pytest.mark.asyncio
async def test_primitives_pass_through(scope):
    for value in (None, True, False, 0, 42, 3.5, "text", ""):
        assert await serialize(scope, value) == value
        assert await deserialize(scope, value) == value


@pytest.mark.asyncio
async def test_nested_round_trip(scope):
    value = {
        "name": "api",
        "ports": [80, 443],
        "tags": {"team": "core", "nested": [{"a": 1}, {"b": None}]},
        "created": datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
    }
    tree = await serialize(scope, value)
    json.dumps(tree)
    assert await deserialize(scope, tree) == value


@pytest.mark.asyncio
async def test_object_key_order_is_kept(scope):
    tree = await serialize(scope, {"b": 1, "a": 2, "c": 3})
    assert list(tree) == ["b", "a", "c"]


@pytest.mark.asyncio
async def test_date(scope):
    when = datetime(2024, 1, 2, 3, 4, 5)
    assert await serialize(scope, when) == {"@date": "2024-01-02T03:04:05"}
    assert await deserialize(scope, {"@date": "2024-01-02T03:04:05"}) == when


@pytest.mark.asyncio
async def test_plain_date(scope):
    tree = await serialize(scope, {"when": date(2024, 1, 2)})
    assert tree == {"when": {"@date": "2024-01-02"}}

    restored = await deserialize(scope, json.loads(json.dumps(tree)))
    assert restored == {"when": date(2024, 1, 2)}
    assert type(restored["when"]) is date


@pytest.mark.asyncio
async def test_midnight_datetime_stays_datetime(scope):
    when = datetime(2024, 1, 2)
    restored = await deserialize(scope, await serialize(scope, when))
    assert type(restored) is datetime
    assert restored == when


class TestSecrets:
    """Secrets are encrypted with the scope password."""

    @pytest.mark.asyncio
    async def test_secret_is_encrypted(self, scope):
        tree = await serialize(scope, {"token": Secret("plain-token")})
        assert set(tree["token"]) == {"@secret"}
        assert "plain-token" not in json.dumps(tree)

    @pytest.mark.asyncio
    async def test_secret_round_trip(self, scope):
        tree = await serialize(scope, {"token": Secret("plain-token")})
        value = await deserialize(scope, tree)
        assert isinstance(value["token"], Secret)
        assert value["token"].reveal() == "plain-token"

    @pytest.mark.asyncio
    async def test_two_serializations_differ(self, scope):
        first = await serialize(scope, Secret("plain-token"))
        second = await serialize(scope, Secret("plain-token"))
        assert first != second
        assert await deserialize(scope, first) == await deserialize(scope, second)

    @pytest.mark.asyncio
    async def test_unencrypted_form(self, scope):
        assert await serialize(scope, Secret("plain-token"), encrypt=False) == {
            "@secret": "plain-token"
        }

    @pytest.mark.asyncio
    async def test_salt_is_created_lazily(self, scope, memory_storage):
        await serialize(scope, {"name": "no secrets"})
        assert SALT_KEY not in memory_storage.get(("test",), {})

        await serialize(scope, Secret("plain-token"))
        assert SALT_KEY in memory_storage[("test",)]
        salt = await scope.get_salt()
        await serialize(scope, Secret("other"))
        assert await scope.get_salt() == salt

    @pytest.mark.asyncio
    async def test_serialize_without_password(self, memory_storage):
        scope = Scope(stage="test", state_store=InMemoryStateStore.factory(memory_storage))
        with pytest.raises(MissingPasswordError):
            await serialize(scope, {"token": Secret("plain-token")})

    @pytest.mark.asyncio
    async def test_deserialize_without_password(self, scope, memory_storage):
        tree = await serialize(scope, Secret("plain-token"))
        bare = Scope(stage="test", state_store=InMemoryStateStore.factory(memory_storage))
        with pytest.raises(MissingPasswordError):
            await deserialize(bare, tree)

    @pytest.mark.asyncio
    async def test_deserialize_with_wrong_password(self, scope, memory_storage):
        tree = await serialize(scope, Secret("plain-token"))
        other = Scope(
            stage="test",
            password="wrong-password",
            state_store=InMemoryStateStore.factory(memory_storage),
        )
        with pytest.raises(DecryptionError):
            await deserialize(other, tree)


class TestSymbols:
    """Interned symbols survive, unique ones are refused."""

    @pytest.mark.asyncio
    async def test_symbol_value(self, scope):
        marker = Symbol.for_("test::Marker")
        tree = await serialize(scope, marker)
        assert tree == {"@symbol": "Symbol(test::Marker)"}
        assert await deserialize(scope, tree) is marker

    @pytest.mark.asyncio
    async def test_symbol_keys_come_first(self, scope):
        marker = Symbol.for_("test::Key")
        tree = await serialize(scope, {"name": "x", marker: 1})
        assert list(tree) == ["Symbol(test::Key)", "name"]
        value = await deserialize(scope, tree)
        assert value[marker] == 1
        assert value["name"] == "x"

    @pytest.mark.asyncio
    async def test_unique_symbol(self, scope):
        with pytest.raises(UniqueSymbolError):
            await serialize(scope, Symbol("unique"))

    @pytest.mark.asyncio
    async def test_unique_symbol_key(self, scope):
        with pytest.raises(UniqueSymbolError):
            await serialize(scope, {Symbol("unique"): 1})


class TestSpecialValues:
    """Scopes, schemas, models and functions."""

    @pytest.mark.asyncio
    async def test_scope_back_reference(self, scope):
        tree = await serialize(scope, {"owner": scope})
        assert tree == {"owner": {"@scope": None}}

        other = Scope(stage="other", state_store=InMemoryStateStore.factory({}))
        value = await deserialize(other, tree)
        assert value["owner"] is other

    @pytest.mark.asyncio
    async def test_schema(self, scope):
        tree = await serialize(scope, {"schema": Bucket})
        assert tree["schema"]["@schema"]["properties"]["name"]["type"] == "string"
        assert await deserialize(scope, tree) == {"schema": Bucket.model_json_schema()}

    @pytest.mark.asyncio
    async def test_type_adapter_schema(self, scope):
        tree = await serialize(scope, TypeAdapter(list[int]))
        assert tree == {"@schema": {"items": {"type": "integer"}, "type": "array"}}

    @pytest.mark.asyncio
    async def test_model_instances_become_objects(self, scope):
        assert await serialize(scope, Bucket(name="assets")) == {"name": "assets", "public": False}
        assert await serialize(scope, Endpoint("localhost", 8080)) == {
            "host": "localhost",
            "port": 8080,
        }

    @pytest.mark.asyncio
    async def test_functions_are_dropped(self, scope):
        tree = await serialize(scope, {"name": "x", "callback": lambda: None, "items": [print, 1]})
        assert tree == {"name": "x", "items": [None, 1]}

    @pytest.mark.asyncio
    async def test_tuples_become_lists(self, scope):
        assert await serialize(scope, (1, "a")) == [1, "a"]

    @pytest.mark.asyncio
    async def test_unsupported_type(self, scope):
        with pytest.raises(TypeError):
            await serialize(scope, object())

    @pytest.mark.asyncio
    async def test_transform_sees_every_value(self, scope):
        seen = []

        def collect(value):
            if isinstance(value, Secret):
                seen.append(value)
            return value

        await serialize(
            scope,
            {"a": Secret("one"), "b": [Secret("two")], "c": {"d": Secret("three")}},
            transform=collect,
        )
        assert [s.reveal() for s in seen] == ["one", "two", "three"]
