import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from nodectl.config import Config
from nodectl.logging import quiet_noisy_libraries, setup_logger
from nodectl.modules.catalog import Catalog
from nodectl.modules.errors import NodectlError
from nodectl.modules.health import HealthChecker
from nodectl.modules.models import RemoteEndpoint
from nodectl.modules.ssh import SessionPool
from nodectl.modules.values import builtin_values, release_name, render_values
from nodectl.store import JsonFileStore
from nodectl.utils import redact_sensitive_data

app = typer.Typer()

debug_mode = False


def setup_logging(debug: bool = False):
    """Configure logging based on debug mode."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=Config.LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )
    quiet_noisy_libraries(debug)


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """nodectl - provision nodes and deploy applications onto them."""
    global debug_mode
    debug_mode = debug
    setup_logging(debug)
    if debug:
        logging.debug("Debug mode enabled")


@app.command("health")
def health(
    host: str = typer.Argument(..., help="Node address"),
    key: Path = typer.Option(..., "--key", "-k", help="Path to a PEM private key"),
    user: str = typer.Option("root", "--user", "-u", help="SSH user"),
    port: int = typer.Option(22, "--port", "-p", help="SSH port"),
):
    """Report setup progress and service state of a node."""
    endpoint = RemoteEndpoint(host=host, credential=key.read_text(), ssh_user=user, port=port)
    pool = SessionPool()
    try:
        report = HealthChecker(pool).check(endpoint)
    finally:
        pool.close_all()
    typer.echo(json.dumps(report.to_dict(), indent=2))


@app.command("catalog")
def catalog(
    directory: Optional[Path] = typer.Option(None, "--dir", help="Catalog directory override"),
):
    """List the applications that can be deployed."""
    for template in Catalog(directory).list():
        typer.echo(f"{template.app_type:<16} {template.name:<20} {template.description}")


@app.command("render")
def render(
    app_type: str = typer.Argument(..., help="Catalog id"),
    subdomain: str = typer.Option(..., "--subdomain", "-s"),
    domain: str = typer.Option(..., "--domain"),
    version: str = typer.Option("latest", "--version", "-v"),
    app_id: str = typer.Option("preview", "--app-id"),
    directory: Optional[Path] = typer.Option(None, "--dir", help="Catalog directory override"),
):
    """Print the values document an application would be installed with."""
    entries = Catalog(directory)
    template = entries.get(app_type)
    release = release_name(subdomain, app_id)
    typer.echo(
        render_values(
            entries.load_values(template),
            builtin_values(version, subdomain, domain, release),
            template.placeholders,
        )
    )


@app.command("store")
def store(
    account_id: str = typer.Argument(..., help="Account to show"),
    prefix: str = typer.Option("", "--prefix", help="Only keys starting with this"),
    path: Optional[str] = typer.Option(None, "--path", help="Store file (default: NODECTL_STORE_PATH)"),
):
    """Dump an account's stored records with secrets redacted."""
    records = JsonFileStore(path)
    data = {k: records.get(account_id, k) for k in records.list_keys(account_id, prefix)}
    typer.echo(json.dumps(redact_sensitive_data(data), indent=2))


@app.command("serve")
def serve(
    factory: str = typer.Argument(..., help="module:callable returning the FastAPI app"),
    host: str = typer.Option(Config.API_HOST, "--host"),
    port: int = typer.Option(Config.API_PORT, "--port"),
):
    """Run the HTTP API. The factory wires in the provider and identity clients."""
    Config.validate()
    logger = setup_logger("nodectl")
    logger.info(f"🚀 Serving {factory} on {host}:{port}")
    uvicorn.run(factory, host=host, port=port, factory=True, log_level="debug" if debug_mode else "info")


if __name__ == "__main__":
    try:
        app()
    except NodectlError as e:
        if debug_mode:
            import traceback
            logging.error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)
