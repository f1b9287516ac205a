"""
Remote state store speaking a small JSON RPC over HTTP.

Every operation is a ``POST`` to the store URL::

    {"method": "get", "params": ["my-resource"], "context": {"chain": ["dev", "app"]}}

answered with ``{"success": true, "result": ...}`` or
``{"success": false, "error": "..."}``. Records travel in their serialized
form, so secrets are encrypted before they leave the process.
"""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import httpx

from ..errors import ConfigurationError, RemoteStateStoreError
from .base import State, StateStore, StateStoreFactory, deserialize_state, serialize_state

if TYPE_CHECKING:
    from ..scope import Scope

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class HTTPStateStore(StateStore):
    """State store backed by a remote actor (e.g. a durable object)."""

    def __init__(
        self,
        scope: "Scope",
        url: str | None = None,
        token: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(scope)
        if url is None or token is None:
            from ..settings import get_settings

            settings = get_settings()
            url = url or settings.state_url
            token = token or settings.state_token
        if not url:
            raise ConfigurationError(
                "Missing URL for the remote state store. Set CAIRN_STATE_URL."
            )
        if not token:
            raise ConfigurationError(
                "Missing token for the remote state store. Set CAIRN_STATE_TOKEN."
            )
        self.url = url
        self._token = token
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @classmethod
    def factory(
        cls,
        url: str | None = None,
        token: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> StateStoreFactory:
        return lambda scope: cls(scope, url, token, client=client)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _call(self, method: str, *params: Any) -> Any:
        request = {
            "method": method,
            "params": list(params),
            "context": {"chain": list(self.scope.chain)},
        }
        try:
            response = await self._http().post(
                self.url,
                json=request,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as e:
            raise RemoteStateStoreError(f'"{method}" request failed: {e}') from e

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise RemoteStateStoreError(
                f'"{method}" request failed with status {response.status_code}: '
                f"expected JSON response, got {content_type or 'no content type'}"
            )
        body = response.json()
        if not body.get("success"):
            raise RemoteStateStoreError(
                f'"{method}" request failed with status {response.status_code}: {body.get("error")}'
            )
        return body.get("result")

    async def deinit(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def list(self) -> list[str]:
        return list(await self._call("list"))

    async def count(self) -> int:
        return int(await self._call("count"))

    async def get(self, key: str) -> State | None:
        record = await self._call("get", key)
        if record is None:
            return None
        return await deserialize_state(self.scope, record)

    async def get_batch(self, ids: Iterable[str]) -> dict[str, State]:
        records = await self._call("getBatch", list(ids))
        return {key: await deserialize_state(self.scope, record) for key, record in records.items()}

    async def all(self) -> dict[str, State]:
        records = await self._call("all")
        return {key: await deserialize_state(self.scope, record) for key, record in records.items()}

    async def set(self, key: str, value: State) -> None:
        await self._call("set", key, await serialize_state(self.scope, value))

    async def delete(self, key: str) -> None:
        await self._call("delete", key)
