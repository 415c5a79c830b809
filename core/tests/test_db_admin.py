from __future__ import annotations

import json
from pathlib import Path

import pytest

from chatdesk_core.internal.db_admin import main


def test_status_is_the_default_action(tmp_path: Path, capsys) -> None:
    assert main(["--home", str(tmp_path)]) == 0

    status = json.loads(capsys.readouterr().out)
    # Registering a database creates its bookkeeping table but applies nothing.
    assert status["settings"]["current_version"] == 0
    assert status["settings"]["pending_migrations"] == 3


def test_migrate_then_rollback(tmp_path: Path, capsys) -> None:
    assert main(["--home", str(tmp_path), "--migrate"]) == 0
    migrated = json.loads(capsys.readouterr().out)
    assert migrated["success"] is True
    assert migrated["results"]["apikeys"] == {"success": True, "errors": []}

    assert main(["--home", str(tmp_path), "--rollback", "settings", "1"]) == 0
    assert json.loads(capsys.readouterr().out) == {"success": True, "errors": []}

    assert main(["--home", str(tmp_path), "--status"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["settings"]["current_version"] == 1
    assert status["encryption"]["current_version"] == 2


def test_backup_writes_every_database(tmp_path: Path, capsys) -> None:
    assert main(["--home", str(tmp_path), "--migrate"]) == 0
    capsys.readouterr()

    assert main(["--home", str(tmp_path), "--backup"]) == 0
    backups = json.loads(capsys.readouterr().out)
    assert set(backups) == {"encryption", "apikeys", "conversations", "settings"}
    assert all(Path(p).exists() for p in backups.values())


def test_rollback_rejects_unknown_database(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["--home", str(tmp_path), "--rollback", "nope", "0"])
    assert exc.value.code == 2
