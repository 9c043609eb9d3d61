from datetime import UTC, datetime
import json
from typing import Optional

from pydantic import ValidationError

from nahcloud.logging_config import get_logger
from nahcloud.server.base_state_lock_provider import (
    InvalidInputError,
    LockBody,
    LockConflictError,
    LockMismatchError,
    StateLockProviderProtocol,
    StateNotFoundError,
)
from nahcloud.server.state_store import LockStatus, StateStore

logger = get_logger(__name__)

INVALID_STATE_IDS = frozenset({"", ".", ".."})


def lock_timestamp() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_lock_body(raw: bytes) -> LockBody:
    """Decode the body of a LOCK request."""
    try:
        data = LockBody.model_validate_json(raw)

    except ValidationError as exc:
        raise InvalidInputError("Invalid lock body - expected terraform lock info JSON") from exc

    if not data.ID:
        raise InvalidInputError("Lock ID is required")

    return data


def parse_unlock_token(raw: bytes) -> str:
    """Decode the body of an UNLOCK request and return the lock ID it carries."""
    try:
        data = json.loads(raw)

    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidInputError("Invalid unlock body - expected JSON") from exc

    token = data.get("ID") if isinstance(data, dict) else None
    if not isinstance(token, str) or not token:
        raise InvalidInputError("Lock ID is required")

    return token


class TFStateLockController(StateLockProviderProtocol):
    """Terraform HTTP backend semantics on top of the state store.

    Writes and deletes are not checked against the current lock holder - terraform
    clients send their lock id with writes voluntarily, and the backend trusts them.
    """

    def __init__(self, store: StateStore):
        self.store = store

    def _validate_state_id(self, state_id: str) -> str:
        if state_id in INVALID_STATE_IDS or "/" in state_id:
            raise InvalidInputError(f"Invalid state id: {state_id!r}")

        return state_id

    async def get(self, state_id: str) -> bytes:
        self._validate_state_id(state_id)
        data = await self.store.read(state_id)
        if data is None:
            raise StateNotFoundError(state_id)

        return data

    async def put(self, state_id: str, value: bytes, lock_id: Optional[str] = None) -> None:
        self._validate_state_id(state_id)
        if not value:
            raise InvalidInputError("State body must not be empty")

        await self.store.write(state_id, value)
        logger.info("State written", state_id=state_id, lock_id=lock_id, size=len(value))

    async def delete(self, state_id: str) -> None:
        self._validate_state_id(state_id)
        existed = await self.store.delete(state_id)
        logger.info("State deleted", state_id=state_id, existed=existed)

    async def lock(self, state_id: str, data: LockBody) -> LockBody:
        self._validate_state_id(state_id)
        if not data.ID:
            raise InvalidInputError("Lock ID is required")

        record = data.model_copy(
            update={
                "Created": lock_timestamp(),
                "Path": data.Path or state_id,
            }
        )
        outcome = await self.store.try_acquire_lock(state_id, record)
        if outcome.status is LockStatus.CONFLICT:
            assert outcome.lock is not None
            logger.info(
                "Lock conflict",
                state_id=state_id,
                lock_id=data.ID,
                holder=outcome.lock.ID,
                who=outcome.lock.Who,
            )
            raise LockConflictError(f"State {state_id} is already locked", lock=outcome.lock)

        logger.info("State locked", state_id=state_id, lock_id=record.ID, who=record.Who)
        return record

    async def unlock(self, state_id: str, lock_id: str) -> None:
        self._validate_state_id(state_id)
        if not lock_id:
            raise InvalidInputError("Lock ID is required")

        outcome = await self.store.release_lock(state_id, lock_id)
        match outcome.status:
            case LockStatus.MISMATCH:
                assert outcome.lock is not None
                logger.info("Lock ID mismatch", state_id=state_id, lock_id=lock_id, holder=outcome.lock.ID)
                raise LockMismatchError(f"State {state_id} is locked with a different ID", lock=outcome.lock)

            case LockStatus.NOT_LOCKED:
                logger.info("Unlock requested but state is not locked", state_id=state_id, lock_id=lock_id)

            case _:
                logger.info("State unlocked", state_id=state_id, lock_id=lock_id)
