from __future__ import annotations

import logging

from rich import print
from rich.logging import RichHandler

from ..config import RecollectConfig
from ..server import serve


def configure_logging(level: str, log_path: str | None = None) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.addHandler(RichHandler(rich_tracebacks=True, show_path=False))
    if log_path:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(file_handler)


def serve_cmd(
    *,
    config: RecollectConfig,
    host: str | None,
    port: int | None,
    log_level: str,
) -> None:
    """Run the HTTP memory service in the foreground."""

    if host:
        config.host = host
    if port is not None:
        config.port = port
    configure_logging(log_level, config.log_path)
    print(f"[green]Recollect listening on http://{config.host}:{config.port}[/green]")
    serve(config)
