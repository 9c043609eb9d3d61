import pathlib
from typing import Any, Self, override

from pydantic import BaseModel

from nahcloud.server.storage_provider_base import StorageProviderProtocol


class MemoryStorageProviderInitConfig(BaseModel):
    """Initialization params required to initialize Memory storage provider.

    Memory storage provider currently have no initialization params required.
    Everything stored in it is lost when the server stops.
    """


class MemoryStorageProvider(StorageProviderProtocol):
    def __init__(self) -> None:
        self.items: dict[str, bytes] = {}

    @override
    @classmethod
    async def from_config(
        cls,
        raw_config: Any,
        *,
        workdir: pathlib.Path,
    ) -> Self:
        result = MemoryStorageProviderInitConfig.model_validate(raw_config)
        return cls(
            **result.model_dump(),
        )

    @override
    async def get_file(self, key: str) -> bytes:
        try:
            return self.items[key]

        except KeyError as exc:
            raise FileNotFoundError(f"Key {key} not found") from exc

    @override
    async def put_file(self, key: str, data: bytes) -> None:
        self.items[key] = bytes(data)

    @override
    async def delete_file(self, key: str) -> None:
        try:
            del self.items[key]

        except KeyError as exc:
            raise FileNotFoundError(f"Key {key} not found") from exc

    @override
    async def put_file_if_absent(self, key: str, data: bytes) -> bool:
        # no await between the check and the write - atomic within the event loop
        if key in self.items:
            return False

        self.items[key] = bytes(data)
        return True
