import pathlib
from typing import Optional

import questionary

from nahcloud.plugins.local_storage_provider.local_storage_provider import (
    LocalStorageProviderInitConfig,
)
from nahcloud.server.config import StorageProviderConfig


async def build_local_storage_provider(local_storage_default_path: Optional[str] = None) -> StorageProviderConfig:
    folder = pathlib.Path(
        await questionary.path(
            "Where is the folder located?",
            default=local_storage_default_path or "",
            only_directories=True,
        ).ask_async()
    )

    return StorageProviderConfig(
        type="local",
        **LocalStorageProviderInitConfig(folder=folder).model_dump(mode="json", exclude_defaults=True),
    )
