from typing import Any, Protocol, Optional
from pydantic import BaseModel, ConfigDict


class LockBody(BaseModel):
    """Data struct that contains the lock information.

    This is the same data struct that is sent by terraform on LOCK and UNLOCK requests.
    It follows the same fields names as the terraform lock info.

    See offical [source](https://github.com/hashicorp/terraform/blob/aea5c0cc180e0e6915454b3bf61f471c230c111b/internal/states/statemgr/locker.go#L129).

    Attributes:
        ID: The ID of the lock - the token the holder must present to release it.
        Operation: The operation that is being performed.
        Info: Extra information supplied by the holder.
        Who: The entity that is performing the operation.
        Version: The terraform version of the holder.
        Created: The time when the lock was accepted.
        Path: The state id the lock protects.
    """

    model_config = ConfigDict(from_attributes=True)

    ID: str
    Operation: str = ""
    Info: str = ""
    Who: str = ""
    Version: str = ""
    Created: str = ""
    Path: str = ""

    def to_wire(self) -> dict[str, Any]:
        """Serialize the lock the way terraform expects it - empty optional fields are omitted."""
        data = self.model_dump()
        return {key: value for key, value in data.items() if key == "ID" or value}


class StateError(Exception):
    """Base error of the state backend."""


class InvalidInputError(StateError):
    pass


class StateNotFoundError(StateError):
    def __init__(self, state_id: str) -> None:
        super().__init__(f"State not found: {state_id}")
        self.state_id = state_id


class StorageError(StateError):
    pass


class LockingError(StateError):
    def __init__(self, msg: str, lock: LockBody) -> None:
        super().__init__(msg)
        self.lock = lock

    @property
    def lock_id(self) -> str:
        return self.lock.ID


class LockConflictError(LockingError):
    pass


class LockMismatchError(LockingError):
    pass


class StateLockProviderProtocol(Protocol):
    async def get(self, state_id: str) -> bytes: ...
    async def put(self, state_id: str, value: bytes, lock_id: Optional[str] = None) -> None: ...
    async def delete(self, state_id: str) -> None: ...
    async def lock(self, state_id: str, data: LockBody) -> LockBody: ...
    async def unlock(self, state_id: str, lock_id: str) -> None: ...
