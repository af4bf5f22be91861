# printvault/log.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.traceback import install

console = Console(stderr=True)

# Enable verbose logging if PRINTVAULT_VERBOSE is truthy (not "", "0", "false")
_VERB = os.getenv("PRINTVAULT_VERBOSE", "").strip().lower()
VERBOSE = _VERB not in ("", "0", "false", "no", "off")

logger = logging.getLogger("printvault")
logger.setLevel(logging.DEBUG if VERBOSE else logging.INFO)
logger.addHandler(logging.NullHandler())

_FILE_HANDLER: Optional[logging.Handler] = None


def install_tracebacks() -> None:
    """Pretty tracebacks for the CLI; library code never calls this."""
    install(show_locals=False, console=console)


def setup_file_logging(logs_dir: Path) -> Path:
    """Attach (once) an append-mode handler writing to logs_dir/app.log."""
    global _FILE_HANDLER
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / "app.log"
    if _FILE_HANDLER is not None:
        if Path(getattr(_FILE_HANDLER, "baseFilename", "")) == log_path.resolve():
            return log_path
        logger.removeHandler(_FILE_HANDLER)
        _FILE_HANDLER.close()
    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%dT%H:%M:%S")
    )
    logger.addHandler(handler)
    _FILE_HANDLER = handler
    return log_path


def debug(msg: str) -> None:
    logger.debug(msg)
    if VERBOSE:
        console.log(f"[dim]DEBUG[/] {msg}")


def info(msg: str) -> None:
    logger.info(msg)
    console.log(f"[bold cyan]INFO[/] {msg}")


def warn(msg: str) -> None:
    logger.warning(msg)
    console.log(f"[bold yellow]WARN[/] {msg}")


def err(msg: str, exc: Optional[BaseException] = None) -> None:
    # stack traces go to the log file only
    logger.error(msg, exc_info=exc)
    console.log(f"[bold red]ERR[/] {msg}")
