import asyncio
from contextlib import contextmanager
import multiprocessing
import subprocess
import time
from typing import Annotated, Iterator
import httpx
import typer
from uvicorn import Config, Server
import yaml
import questionary

from nahcloud.cli.builders.wizard import start_configfile_creation_wizard
from nahcloud.logging_config import configure_logging
from nahcloud.server.app import (
    LOCK_METHOD,
    UNLOCK_METHOD,
    start_server,
    app as server_app,
    config as server_config,
)
from nahcloud.server.config import DEFAULT_PORT


READY_MESSAGE = """\
terraform {{
  backend "http" {{
{content}
  }}
}}
"""

ADDRESS_INFO = """\
    address = "http://localhost:{port}/tfstate/{state_id}"
    lock_address = "http://localhost:{port}/tfstate/{state_id}"
    lock_method = "{lock_method}"
    unlock_address = "http://localhost:{port}/tfstate/{state_id}"
    unlock_method = "{unlock_method}"
"""

READY_TIMEOUT_SECONDS = 30


app = typer.Typer(pretty_exceptions_enable=False, rich_markup_mode=None)


@contextmanager
def capture_aborts() -> Iterator[None]:
    try:
        yield
    except typer.Abort as e:
        print("Error:", e)
        raise


def render_bindings(state_id: str, port: int) -> str:
    content = ADDRESS_INFO.format(
        port=port,
        state_id=state_id,
        lock_method=LOCK_METHOD,
        unlock_method=UNLOCK_METHOD,
    ).rstrip()
    return READY_MESSAGE.format(content=content)


async def _init() -> None:
    config_file_location = server_config.config_file
    if config_file_location.exists():
        print("Configuration file already exists")
        should_replace = await questionary.confirm(
            "Do you want to replace it?",
            default=False,
        ).ask_async()
        if not should_replace:
            print("Aborting...")
            return

        print("Replacing existing configuration file")

    result_file = await start_configfile_creation_wizard(str(server_config.state_dir / "storage"))
    raw_file = yaml.safe_dump(yaml.safe_load(result_file.model_dump_json()))
    config_file_location.write_text(raw_file, encoding="utf-8")

    print("\n\n")
    print("Configuration file created")
    print("You can now start the server with `nahcloud start`")


@app.command()
def init() -> None:
    """Initialize the configuration file for the server in current directory.

    Starts an interactive wizard to create the configuration file.

    Output will be a file named `nahcloud.yaml` in the current directory.
    """
    with capture_aborts():
        asyncio.run(_init())


@app.command()
def start(
    host: Annotated[str, typer.Option(help="Host to bind the server to")] = server_config.host,
    port: Annotated[int, typer.Option(help="Port to run the server on")] = server_config.port,
) -> None:
    """Starts the server with the configuration file in the current directory."""
    start_server(host, port)


@app.command()
def print_bindings(
    state_id: Annotated[str, typer.Argument(help="ID of the terraform state")],
    port: Annotated[int, typer.Option(help="Port the server runs on")] = DEFAULT_PORT,
) -> None:
    """Prints the terraform backend configuration for the given state id and port."""
    print("In terraform backend configuration, use the following:\n")
    print(render_bindings(state_id, port))


class UvicornServer(multiprocessing.Process):
    def __init__(self, config: Config):
        super().__init__()
        self.server = Server(config=config)
        self.config = config

    def stop(self):
        self.terminate()

    def run(self, *args, **kwargs):
        configure_logging(json_logs=server_config.json_logs, log_level=self.config.log_level or "INFO")
        self.server.run()


def wait_until_ready(port: int, timeout: float = READY_TIMEOUT_SECONDS) -> None:
    deadline = time.monotonic() + timeout
    with httpx.Client() as client:
        while True:
            try:
                response = client.get(f"http://localhost:{port}/ready")
                response.raise_for_status()
                return
            except httpx.HTTPError:
                if time.monotonic() > deadline:
                    raise typer.Abort(f"Server did not become ready within {timeout} seconds")

                time.sleep(0.2)


@app.command()
def wrap(
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Print more details about the backend"),
    ] = False,
    port: Annotated[int, typer.Option(help="Port to run the server on")] = DEFAULT_PORT,
    args: list[str] = typer.Argument(help="Command to run"),
) -> None:
    """Main command that allows wrapping any command with the context of the server running.

    Its main purpose is to allow running terraform commands with the server running.

    Examples:

    $ nahcloud wrap -- terraform init
    """
    instance = UvicornServer(
        config=Config(
            app=server_app,
            port=port,
            log_config=None,
            log_level="info" if verbose else "warning",
        )
    )
    instance.start()
    try:
        with capture_aborts():
            wait_until_ready(port)

        result = subprocess.run(args)
    finally:
        instance.stop()

    raise typer.Exit(result.returncode)


def main() -> None:
    app()
