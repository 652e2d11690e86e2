# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""devbridge command line interface."""

import os
from pathlib import Path
from typing import Optional

import click
import yaml

from devbridge import __version__
from devbridge.host_config import GatewayConfig
from devbridge.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="devbridge")
def cli():
    """devbridge - remote development gateway (SSH shells, files, git, search)."""


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config: 127.0.0.1)")
@click.option("--port", type=int, default=None, help="Listen port (default from config: 8080)")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default ~/.config/devbridge/config.yml)",
)
@click.option("--debug", is_flag=True, help="Verbose logging")
def serve(host: Optional[str], port: Optional[int], config_path: Optional[Path], debug: bool):
    """Run the gateway server."""
    import uvicorn

    from devbridge.web.server import create_app

    config = GatewayConfig(config_path)
    model = config.model
    configure_logging(
        debug=debug,
        daemon=True,
        log_level="DEBUG" if debug else model.logging.level,
        log_file=Path(model.logging.file).expanduser() if model.logging.file else None,
    )

    host = host or model.server.host
    port = port or model.server.port
    if not model.auth.token:
        logger.warning("No auth token set (auth.token or DEVBRIDGE_AUTH_TOKEN), running open")

    app = create_app(config)
    logger.success(f"devbridge listening on ws://{host}:{port}/ws")
    uvicorn.run(app, host=host, port=port, log_level="debug" if debug else "info")


@cli.command("config")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default ~/.config/devbridge/config.yml)",
)
@click.option("--show-secrets", is_flag=True, help="Print the auth token unmasked")
def show_config(config_path: Optional[Path], show_secrets: bool):
    """Print the effective configuration (file + environment)."""
    config = GatewayConfig(config_path)
    exists = config.config_path.exists()
    logger.print(f"# {config.config_path}{'' if exists else ' (not found, defaults)'}", style="dim")
    data = config.as_dict(redact=not show_secrets)
    click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False).rstrip(os.linesep))


def main():
    cli()


if __name__ == "__main__":
    main()
