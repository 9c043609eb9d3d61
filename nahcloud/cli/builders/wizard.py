import questionary

from nahcloud.cli.builders.local_storage import build_local_storage_provider
from nahcloud.server.config import (
    CONFIG_VERSION,
    ConfigFile,
    StorageProviderConfig,
)


async def start_configfile_creation_wizard(default_state_dir: str) -> ConfigFile:
    # ask how to store the states
    answer = await questionary.select(
        "How do you want to store the terraform states?",
        choices=["Local", "Memory"],
    ).ask_async()

    match answer:
        case "Local":
            storage_provider = await build_local_storage_provider(default_state_dir)

        case "Memory":
            print("States and locks will be lost when the server stops")
            storage_provider = StorageProviderConfig(type="memory")

        case _:
            raise ValueError("Invalid selection")

    return ConfigFile(
        version=CONFIG_VERSION,
        storage_provider=storage_provider,
    )
