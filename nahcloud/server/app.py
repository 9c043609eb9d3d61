from contextlib import asynccontextmanager
from datetime import timedelta
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
import platform
import time
from typing import Annotated, AsyncIterator, Awaitable, Callable, Literal, Optional
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
import yaml

from nahcloud.logging_config import configure_logging, get_logger
from nahcloud.server.config import PACKAGE_NAME, ConfigFile, Settings
from nahcloud.server.base_state_lock_provider import (
    InvalidInputError,
    LockConflictError,
    LockMismatchError,
    StateLockProviderProtocol,
    StateNotFoundError,
    StorageError,
)
from nahcloud.server.state_store import StateStore
from nahcloud.server.storage_provider_base import (
    STORAGE_PROVIDERS_ENTRYPOINT,
    StorageProviderProtocol,
)
from nahcloud.server.tf_state_lock_controller import (
    TFStateLockController,
    parse_lock_body,
    parse_unlock_token,
)
from nahcloud.utils.plugins import get_providers

config = Settings()

logger = get_logger(__name__)

START_TIME = time.monotonic()

LOCK_METHOD = "LOCK"
UNLOCK_METHOD = "UNLOCK"


def get_version() -> str:
    try:
        return package_version(PACKAGE_NAME)

    except PackageNotFoundError:
        return "dev"


def load_config_file(location: Path) -> ConfigFile:
    if not location.exists():
        raise FileNotFoundError(f"Config file not found: {location} - run `{PACKAGE_NAME} init` to create one")

    obj = yaml.safe_load(location.read_bytes())
    return ConfigFile.model_validate(obj)


async def create_storage_provider(file_config: ConfigFile, workdir: Path) -> StorageProviderProtocol:
    storage_providers = get_providers(
        StorageProviderProtocol,
        STORAGE_PROVIDERS_ENTRYPOINT,
    )

    storage_config = file_config.storage_provider
    if storage_config.type not in storage_providers:
        raise ValueError(f"Unsupported storage provider type: {storage_config.type}")

    storage_class = storage_providers[storage_config.type].model_class
    return await storage_class.from_config(
        storage_config.model_extra or {},
        workdir=workdir,
    )


async def initialize_controller() -> StateLockProviderProtocol:
    file_config = load_config_file(config.config_file)
    storage_provider = await create_storage_provider(file_config, workdir=config.state_dir)
    logger.info("Storage provider initialized", type=file_config.storage_provider.type)

    return TFStateLockController(store=StateStore(storage_provider))


state = {}


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    state["controller"] = await initialize_controller()
    yield


def get_controller() -> StateLockProviderProtocol:
    return state["controller"]


ControllerDependency = Annotated[StateLockProviderProtocol, Depends(get_controller)]

app = FastAPI(title=PACKAGE_NAME, lifespan=lifespan)

if config.cors_enabled:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", LOCK_METHOD, UNLOCK_METHOD],
        allow_headers=["Accept", "Authorization", "Content-Type", "X-CSRF-Token"],
    )


@app.middleware("http")
async def access_log(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "Request handled",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(LockConflictError)
async def lock_conflict_handler(_: Request, exc: LockConflictError) -> JSONResponse:
    # terraform decodes the body as the lock info of the current holder
    return JSONResponse(status_code=status.HTTP_423_LOCKED, content=exc.lock.to_wire())


@app.exception_handler(LockMismatchError)
async def lock_mismatch_handler(_: Request, exc: LockMismatchError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=exc.lock.to_wire())


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(_: Request, exc: InvalidInputError) -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(StateNotFoundError)
async def not_found_handler(_: Request, exc: StateNotFoundError) -> JSONResponse:
    return error_response(status.HTTP_404_NOT_FOUND, str(exc))


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure", path=request.url.path, method=request.method, exc_info=exc)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal server error")


router = APIRouter()


@router.get("/tfstate/{state_id}")
async def get_state(state_id: str, controller: ControllerDependency) -> Response:
    existing_state = await controller.get(state_id)
    return Response(content=existing_state, media_type="application/json")


@router.post("/tfstate/{state_id}")
async def update_state(
    state_id: str,
    request: Request,
    controller: ControllerDependency,
    lock_id: Annotated[Optional[str], Query(alias="ID", description="ID of the lock held by the writer")] = None,
) -> Response:
    await controller.put(state_id, await request.body(), lock_id)
    return Response(status_code=status.HTTP_200_OK)


@router.delete("/tfstate/{state_id}")
async def delete_state(state_id: str, controller: ControllerDependency) -> Response:
    await controller.delete(state_id)
    return Response(status_code=status.HTTP_200_OK)


@router.api_route("/tfstate/{state_id}", methods=[LOCK_METHOD])
async def lock_state(state_id: str, request: Request, controller: ControllerDependency) -> JSONResponse:
    body = parse_lock_body(await request.body())
    accepted = await controller.lock(state_id, body)
    return JSONResponse(content=accepted.to_wire())


@router.api_route("/tfstate/{state_id}", methods=[UNLOCK_METHOD])
async def unlock_state(state_id: str, request: Request, controller: ControllerDependency) -> Response:
    lock_id = parse_unlock_token(await request.body())
    await controller.unlock(state_id, lock_id)
    return Response(status_code=status.HTTP_200_OK)


app.include_router(router)
app.include_router(router, prefix="/v1")


@app.get("/ready")
def ready() -> Literal["Ready"]:
    return "Ready"


@app.get("/buildz")
def buildz() -> dict[str, str]:
    return {
        "version": get_version(),
        "python_version": platform.python_version(),
        "os": platform.system().lower(),
        "arch": platform.machine(),
        "uptime": str(timedelta(seconds=round(time.monotonic() - START_TIME))),
    }


def start_server(host: str, port: int) -> None:
    configure_logging(json_logs=config.json_logs, log_level=config.log_level)
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    start_server(host=config.host, port=config.port)
