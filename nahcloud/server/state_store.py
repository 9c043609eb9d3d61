import asyncio
import enum
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Iterator, Optional

from nahcloud.server.base_state_lock_provider import LockBody, StorageError
from nahcloud.server.storage_provider_base import StorageProviderProtocol


STATES_PREFIX = "states"
LOCKS_PREFIX = "locks"


class LockStatus(enum.Enum):
    ACQUIRED = "acquired"
    CONFLICT = "conflict"
    RELEASED = "released"
    MISMATCH = "mismatch"
    NOT_LOCKED = "not_locked"


@dataclass(frozen=True)
class LockOutcome:
    """Result of a lock operation.

    Attributes:
        status: What happened.
        lock: The stored lock - the accepted or released one on success,
            the current holder on conflict or mismatch, None when nothing was locked.
    """

    status: LockStatus
    lock: Optional[LockBody] = None


class KeyedLock:
    """A mutex per key - tasks using different keys never wait on each other.

    Entries are dropped as soon as no task holds or waits for them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield

        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


@contextmanager
def raise_storage_error_on_failure(state_id: str) -> Iterator[None]:
    try:
        yield
    except FileNotFoundError:
        raise
    except Exception as e:
        raise StorageError(f"Storage failure for state {state_id}") from e


class StateStore:
    """Stores the state blob and the lock record of every state id on top of a storage provider.

    Every operation on a state id runs under that id's mutex, so operations on the same id
    behave as if they ran one after the other.
    """

    def __init__(self, storage_driver: StorageProviderProtocol) -> None:
        self.storage_driver = storage_driver
        self._guard = KeyedLock()

    @staticmethod
    def state_key(state_id: str) -> str:
        return f"{STATES_PREFIX}/{state_id}.tfstate"

    @staticmethod
    def lock_key(state_id: str) -> str:
        return f"{LOCKS_PREFIX}/{state_id}.lock"

    async def _read_lock(self, state_id: str) -> Optional[LockBody]:
        with raise_storage_error_on_failure(state_id):
            try:
                data = await self.storage_driver.get_file(self.lock_key(state_id))

            except FileNotFoundError:
                return None

            return LockBody.model_validate_json(data)

    async def _delete_if_exists(self, key: str) -> bool:
        try:
            await self.storage_driver.delete_file(key)

        except FileNotFoundError:
            return False

        return True

    async def read(self, state_id: str) -> Optional[bytes]:
        async with self._guard.hold(state_id):
            with raise_storage_error_on_failure(state_id):
                try:
                    return await self.storage_driver.get_file(self.state_key(state_id))

                except FileNotFoundError:
                    return None

    async def write(self, state_id: str, data: bytes) -> None:
        async with self._guard.hold(state_id):
            with raise_storage_error_on_failure(state_id):
                await self.storage_driver.put_file(self.state_key(state_id), data)

    async def delete(self, state_id: str) -> bool:
        """Delete the state blob and any lock of the state id.

        Returns:
            False if neither existed.
        """
        async with self._guard.hold(state_id):
            with raise_storage_error_on_failure(state_id):
                state_existed = await self._delete_if_exists(self.state_key(state_id))
                lock_existed = await self._delete_if_exists(self.lock_key(state_id))

        return state_existed or lock_existed

    async def read_lock(self, state_id: str) -> Optional[LockBody]:
        async with self._guard.hold(state_id):
            return await self._read_lock(state_id)

    async def try_acquire_lock(self, state_id: str, record: LockBody) -> LockOutcome:
        async with self._guard.hold(state_id):
            with raise_storage_error_on_failure(state_id):
                stored = await self.storage_driver.put_file_if_absent(
                    self.lock_key(state_id),
                    record.model_dump_json().encode(),
                )

            if stored:
                return LockOutcome(LockStatus.ACQUIRED, record)

            existing = await self._read_lock(state_id)
            if existing is None:
                # the holder released between our attempt and the read - only possible across processes
                raise StorageError(f"Lock of state {state_id} changed during acquisition")

            return LockOutcome(LockStatus.CONFLICT, existing)

    async def release_lock(self, state_id: str, token: str) -> LockOutcome:
        async with self._guard.hold(state_id):
            existing = await self._read_lock(state_id)
            if existing is None:
                return LockOutcome(LockStatus.NOT_LOCKED)

            if existing.ID != token:
                return LockOutcome(LockStatus.MISMATCH, existing)

            with raise_storage_error_on_failure(state_id):
                await self._delete_if_exists(self.lock_key(state_id))

            return LockOutcome(LockStatus.RELEASED, existing)
