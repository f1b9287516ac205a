"""File system state store: one JSON document per resource."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

from .base import State, StateStore, StateStoreFactory, deserialize_state, serialize_state

if TYPE_CHECKING:
    from ..scope import Scope

logger = logging.getLogger(__name__)

SUFFIX = ".json"


def _encode(segment: str) -> str:
    return quote(segment, safe="")


class FileSystemStateStore(StateStore):
    """Stores ``<root>/<chain...>/<id>.json``.

    Every chain segment and resource ID is percent-encoded, so IDs may
    contain "/" and the reserved ":" keys get their own file names. Nested
    scopes are subdirectories and are not listed as records.
    """

    def __init__(self, scope: "Scope", root: Path | str | None = None):
        super().__init__(scope)
        if root is None:
            from ..settings import get_settings

            root = get_settings().state_dir
        self.root = Path(root)
        self.directory = self.root.joinpath(*(_encode(part) for part in scope.chain))

    @classmethod
    def factory(cls, root: Path | str | None = None) -> StateStoreFactory:
        return lambda scope: cls(scope, root)

    def _path(self, key: str) -> Path:
        return self.directory / f"{_encode(key)}{SUFFIX}"

    async def init(self) -> None:
        await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)

    async def deinit(self) -> None:
        def _remove_if_empty() -> None:
            try:
                self.directory.rmdir()
                logger.debug(f"Removed empty state directory {self.directory}")
            except OSError:
                # missing or still holds records/child scopes
                pass

        await asyncio.to_thread(_remove_if_empty)

    async def list(self) -> list[str]:
        def _list() -> list[str]:
            if not self.directory.is_dir():
                return []
            return sorted(
                unquote(path.name[: -len(SUFFIX)])
                for path in self.directory.iterdir()
                if path.is_file() and path.name.endswith(SUFFIX)
            )

        return await asyncio.to_thread(_list)

    async def get(self, key: str) -> State | None:
        path = self._path(key)

        def _read() -> str | None:
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None

        content = await asyncio.to_thread(_read)
        if content is None:
            return None
        return await deserialize_state(self.scope, json.loads(content))

    async def set(self, key: str, value: State) -> None:
        document = json.dumps(await serialize_state(self.scope, value), indent=2)
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write to temporary file first, then rename (atomic operation)
            temp_file = path.with_name(f".{path.name}.tmp")
            temp_file.write_text(document, encoding="utf-8")
            os.replace(temp_file, path)

        await asyncio.to_thread(_write)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, missing_ok=True)
