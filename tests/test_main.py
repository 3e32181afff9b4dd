from __future__ import annotations

from pathlib import Path

import pytest

from spectrum_watcher.__main__ import TOKEN_ENV, TOKEN_SETTING, main
from spectrum_watcher.config_store import ConfigStore


def test_configuration_commands(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db_path = str(tmp_path / "db.sqlite")

    assert main(["--db-path", db_path, "set-forum", "guild-1", " 190048 "]) == 0
    assert main(["--db-path", db_path, "set-channel", "guild-1", "555"]) == 0

    store = ConfigStore(Path(db_path))
    config = store.get_subscriber("guild-1")
    assert config is not None
    assert config.forum_id == "190048"
    assert config.destination_id == "555"
    assert config.updated_by == "cli"
    store.close()

    assert main(["--db-path", db_path, "clear", "guild-1"]) == 0
    assert main(["--db-path", db_path, "clear", "guild-1"]) == 1
    assert "190048" in capsys.readouterr().out


def test_invalid_forum_id_is_rejected(tmp_path: Path) -> None:
    db_path = str(tmp_path / "db.sqlite")
    with pytest.raises(SystemExit):
        main(["--db-path", db_path, "set-forum", "guild-1", "x" * 40])


def test_token_is_stored_only_on_request(tmp_path: Path) -> None:
    db_path = str(tmp_path / "db.sqlite")
    main(["--db-path", db_path, "--discord-token", "secret", "clear", "guild-1"])

    store = ConfigStore(Path(db_path))
    assert store.get_setting(TOKEN_SETTING) is None
    store.close()

    main(
        ["--db-path", db_path, "--discord-token", "secret", "--save-token", "clear", "guild-1"]
    )

    store = ConfigStore(Path(db_path))
    assert store.get_setting(TOKEN_SETTING) == "secret"
    store.close()


def test_run_requires_token(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(TOKEN_ENV, raising=False)
    with pytest.raises(SystemExit):
        main(["--db-path", str(tmp_path / "db.sqlite"), "post-latest", "guild-1"])
