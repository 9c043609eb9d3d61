import pathlib
from typing import Any, Protocol, Self, runtime_checkable

STORAGE_PROVIDERS_ENTRYPOINT = "nahcloud.plugins.storage_provider"


@runtime_checkable
class StorageProviderProtocol(Protocol):
    """Protocol for storage providers.

    A storage provider is a plain key-value store of byte values - the state store builds
    the terraform state and lock records on top of it.

    Every storage provider must implement `StorageProviderProtocol` methods -
    and register to the `nahcloud.plugins.storage_provider` entrypoint.

    Example:
        Register a storage provider - if your project is based on poetry:
        ```toml
        [tool.poetry.plugins."nahcloud.plugins.storage_provider"]
        memory = "nahcloud.plugins.memory_storage_provider.memory_storage_provider:MemoryStorageProvider"
        ```
    """

    @classmethod
    async def from_config(
        cls,
        raw_config: Any,
        *,
        workdir: pathlib.Path,
    ) -> Self:
        """Create an instance of the storage provider from the configuration.

        Args:
            raw_config: The raw configuration propagated from the storage provider config.
            workdir: The data directory of nahcloud - located at `~/.local/share/nahcloud` -
                can be used to manage state of the provider.
        """
        ...

    async def get_file(self, key: str) -> bytes:
        """Get the value stored under the key.

        Args:
            key: The key of the value.

        Raises:
            FileNotFoundError: when nothing is stored under the key.
        """
        ...

    async def put_file(self, key: str, data: bytes) -> None:
        """Store the value under the key - replacing any existing value.

        Args:
            key: The key of the value.
            data: The value to store.
        """
        ...

    async def delete_file(self, key: str) -> None:
        """Delete the value stored under the key.

        Args:
            key: The key of the value.

        Raises:
            FileNotFoundError: when nothing is stored under the key.
        """
        ...

    async def put_file_if_absent(self, key: str, data: bytes) -> bool:
        """Atomically store the value only if nothing is stored under the key yet.

        Args:
            key: The key of the value.
            data: The value to store.

        Returns:
            True if the value was stored, False if the key already had a value (which is left untouched).
        """
        ...
