import os
import pathlib
import tempfile
from typing import Any, Optional, Self, override

from pydantic import BaseModel

from nahcloud.server.storage_provider_base import StorageProviderProtocol


class LocalStorageProviderInitConfig(BaseModel):
    """Initialization params required to initialize Local storage provider.

    Attributes:
        folder: The folder to store the files in - defaults to the nahcloud data directory.
        folder_mode: The permissions of created folders.
        file_mode: The permissions of created files.
    """

    folder: Optional[pathlib.Path] = None
    folder_mode: int = 0o700
    file_mode: int = 0o600


class LocalStorageProvider(StorageProviderProtocol):
    def __init__(self, folder: pathlib.Path, folder_mode: int, file_mode: int) -> None:
        self.folder = folder.expanduser()
        self.folder_mode = folder_mode
        self.file_mode = file_mode

        if not self.folder.exists():
            self.folder.mkdir(parents=True, exist_ok=True)
            self.folder.chmod(self.folder_mode)

    @override
    @classmethod
    async def from_config(
        cls,
        raw_config: Any,
        *,
        workdir: pathlib.Path,
    ) -> Self:
        result = LocalStorageProviderInitConfig.model_validate(raw_config)
        return cls(
            folder=result.folder or workdir / "storage",
            folder_mode=result.folder_mode,
            file_mode=result.file_mode,
        )

    def _path(self, key: str) -> pathlib.Path:
        clean = pathlib.PurePosixPath(key)
        if not key or clean.is_absolute() or ".." in clean.parts:
            raise ValueError(f"Invalid key: {key!r}")

        return self.folder / clean

    def _write_temp(self, target: pathlib.Path, data: bytes) -> pathlib.Path:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        with os.fdopen(fd, "wb") as temp_file:
            temp_file.write(data)

        temp_path = pathlib.Path(temp_name)
        temp_path.chmod(self.file_mode)
        return temp_path

    @override
    async def get_file(self, key: str) -> bytes:
        item_file = self._path(key)
        try:
            return item_file.read_bytes()

        except FileNotFoundError as exc:
            raise FileNotFoundError(f"File {item_file} not found") from exc

    @override
    async def put_file(self, key: str, data: bytes) -> None:
        item_file = self._path(key)
        temp_file = self._write_temp(item_file, data)
        # readers see either the old or the new content - never a partial write
        os.replace(temp_file, item_file)

    @override
    async def delete_file(self, key: str) -> None:
        item_file = self._path(key)
        try:
            item_file.unlink()

        except FileNotFoundError as exc:
            raise FileNotFoundError(f"File {item_file} not found") from exc

    @override
    async def put_file_if_absent(self, key: str, data: bytes) -> bool:
        item_file = self._path(key)
        temp_file = self._write_temp(item_file, data)
        try:
            # link() fails if the target exists - a test-and-set shared by every process using the folder
            os.link(temp_file, item_file)

        except FileExistsError:
            return False

        finally:
            temp_file.unlink()

        return True
