from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ChatDeskPaths:
    home: Path
    db_dir: Path
    backups_dir: Path
    logs_dir: Path
    config_dir: Path

    @property
    def core_config_path(self) -> Path:
        return self.config_dir / "core.json"


def resolve_chatdesk_home(environ: dict[str, str] | None = None) -> Path:
    """Where ChatDesk keeps its databases, logs and config.

    CHATDESK_HOME wins when set; a relative value is taken from the user's
    home directory. Otherwise the per-user data directory of the platform
    is used (APPDATA on Windows, Application Support on macOS, XDG_DATA_HOME
    or ~/.local/share elsewhere).
    """

    env = os.environ if environ is None else environ

    raw = (env.get("CHATDESK_HOME") or "").strip()
    if raw:
        candidate = Path(raw).expanduser()
        # Relative values are anchored at the user's home, never the CWD.
        if not candidate.is_absolute():
            candidate = (Path.home() / candidate).resolve()
        else:
            candidate = candidate.resolve()
        return candidate

    def default_home() -> Path:
        if sys.platform.startswith("win"):
            base = os.environ.get("APPDATA") or os.environ.get("LOCALAPPDATA")
            if base:
                return Path(base) / "ChatDesk"
            return Path.home() / "AppData" / "Roaming" / "ChatDesk"

        if sys.platform == "darwin":
            return Path.home() / "Library" / "Application Support" / "ChatDesk"

        xdg = os.environ.get("XDG_DATA_HOME")
        if xdg:
            return Path(xdg) / "chatdesk"
        return Path.home() / ".local" / "share" / "chatdesk"

    return default_home().resolve()


def ensure_chatdesk_layout(home: Path) -> ChatDeskPaths:
    """Create db/, logs/ and config/ under `home` and return the layout.

    db-backups/ is only named here; backups create it when first needed.
    """

    home.mkdir(parents=True, exist_ok=True)

    db_dir = home / "db"
    backups_dir = home / "db-backups"
    logs_dir = home / "logs"
    config_dir = home / "config"

    for path in (db_dir, logs_dir, config_dir):
        path.mkdir(parents=True, exist_ok=True)

    return ChatDeskPaths(
        home=home,
        db_dir=db_dir,
        backups_dir=backups_dir,
        logs_dir=logs_dir,
        config_dir=config_dir,
    )
