# printvault/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from printvault.errors import ValidationError

SETTINGS_FILE = "printvault.yaml"
DEFAULT_HOME = "./app_home"
DEFAULT_LOCK_TIMEOUT = 5.0
DEFAULT_BACKUP_INTERVAL_HOURS = 24.0


def _truthy(val: Optional[str]) -> bool:
    return bool(val and val.strip().lower() in ("1", "true", "yes", "on"))


@dataclass(frozen=True)
class Settings:
    home: Path
    database_path: Path
    archive_root: Path
    backups_dir: Path
    logs_dir: Path
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    backup_interval_hours: float = DEFAULT_BACKUP_INTERVAL_HOURS
    require_print_date: bool = False

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"

    def ensure_dirs(self) -> None:
        for d in (self.home, self.archive_root, self.backups_dir, self.logs_dir, self.database_path.parent):
            d.mkdir(parents=True, exist_ok=True)


def _read_settings_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ValidationError(f"Could not read settings file {path}: {e}", path=path) from e
    if not isinstance(data, dict):
        raise ValidationError(f"Settings file {path} must be a mapping; got {type(data).__name__}", path=path)
    return data


def _resolve(home: Path, value: Any) -> Path:
    p = Path(str(value)).expanduser()
    return (p if p.is_absolute() else home / p).resolve()


def load_settings(home: Optional[Path | str] = None) -> Settings:
    """
    Build Settings from defaults, then home/printvault.yaml, then the environment.
    Nothing is created on disk here; see Settings.ensure_dirs().
    """
    load_dotenv()

    home_path = Path(home or os.getenv("PRINTVAULT_HOME") or DEFAULT_HOME).expanduser().resolve()
    file_cfg = _read_settings_file(home_path / SETTINGS_FILE)

    def pick(env: str, key: str, default: Any) -> Any:
        val = os.getenv(env)
        if val not in (None, ""):
            return val
        if file_cfg.get(key) not in (None, ""):
            return file_cfg[key]
        return default

    try:
        lock_timeout = float(pick("PRINTVAULT_LOCK_TIMEOUT", "lock_timeout", DEFAULT_LOCK_TIMEOUT))
        interval = float(pick("PRINTVAULT_BACKUP_INTERVAL_HOURS", "backup_interval_hours", DEFAULT_BACKUP_INTERVAL_HOURS))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid numeric setting: {e}") from e
    if lock_timeout <= 0 or interval <= 0:
        raise ValidationError("lock_timeout and backup_interval_hours must be positive")

    require_dates = pick("PRINTVAULT_REQUIRE_PRINT_DATE", "require_print_date", False)
    if not isinstance(require_dates, bool):
        require_dates = _truthy(str(require_dates))

    return Settings(
        home=home_path,
        database_path=_resolve(home_path, pick("PRINTVAULT_DB_PATH", "database_path", "print_jobs.db")),
        archive_root=_resolve(home_path, pick("PRINTVAULT_ARCHIVE_ROOT", "archive_root", "projects")),
        backups_dir=_resolve(home_path, pick("PRINTVAULT_BACKUPS_DIR", "backups_dir", "backups")),
        logs_dir=_resolve(home_path, "logs"),
        lock_timeout=lock_timeout,
        backup_interval_hours=interval,
        require_print_date=require_dates,
    )
