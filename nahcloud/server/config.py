import pathlib
from typing import Annotated

import semver
import xdg_base_dirs
from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
)

from pydantic import BaseModel, ConfigDict, Field, field_validator

PACKAGE_NAME = "nahcloud"

CONFIG_VERSION = "1"

DEFAULT_PORT = 8080


class StorageProviderConfig(BaseModel):
    """Data struct that contains the configuration for a storage provider.

    Each storage provider defines it's own unique configuration parameters -
    and the parameters will be passed through to the storage provider.

    Attributes:
        type: storage provider type as declared in the entrypoint.
        **kwargs: storage provider specific configuration parameters.

    Example:
        In this example, the `local` storage provider gets a dict: `{"folder": "/path/to/folder"}` as the configuration.

        ```yaml
        type: local
        folder: /path/to/folder
        ```
    """

    model_config = ConfigDict(extra="allow")
    type: str


class ConfigFile(BaseModel):
    """The configuration file for nahcloud.

    Attributes:
        version: The version of the configuration file.
        storage_provider: The storage provider that keeps the terraform states and locks.
    """

    version: str = CONFIG_VERSION
    storage_provider: StorageProviderConfig

    @field_validator("version")
    @classmethod
    def validate_version(cls, value: str) -> str:
        current_version = semver.Version.parse(value, optional_minor_and_patch=True)
        config_version = semver.Version.parse(CONFIG_VERSION, optional_minor_and_patch=True)
        if current_version < config_version:
            raise ValueError(
                f"Unsupported version ({current_version} < {config_version}) - please upgrade the config file"
            )

        if current_version > config_version:
            raise ValueError(
                f"Unsupported version ({current_version} > {config_version}) - please check if there is a newer version of {PACKAGE_NAME}"
            )

        return value


class Settings(BaseSettings):
    """Server settings - every field can be set with a `NAH_` prefixed environment variable.

    Example:
        `NAH_PORT=9090 NAH_JSON_LOGS=true nahcloud start`
    """

    model_config = SettingsConfigDict(env_prefix="NAH_")

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    config_file: pathlib.Path = pathlib.Path(f"{PACKAGE_NAME}.yaml")
    state_dir: Annotated[
        pathlib.Path,
        Field(
            default=xdg_base_dirs.xdg_data_home() / PACKAGE_NAME,
        ),
    ]
    log_level: str = "INFO"
    json_logs: bool = False
    cors_enabled: bool = True
