"""Tests for core/trade_history/backup.py."""
from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from core.trade_history.backup import backup_dir_for, backup_histories, list_backups, prune_backups

pytestmark = pytest.mark.unit

T0 = datetime(2025, 1, 1, 12, 0, 0)


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "history"
    path.mkdir()
    (path / "trade-history-poe2-Standard.json").write_text('{"entries": []}', encoding="utf-8")
    (path / "trade-history-poe1-Hardcore.json").write_text('{"entries": []}', encoding="utf-8")
    return path


def test_backs_up_every_history_file(data_dir):
    result = backup_histories(data_dir, now=T0)

    assert result.success
    assert result.backed_up_files == ["trade-history-poe1-Hardcore.json", "trade-history-poe2-Standard.json"]
    assert sorted(p.name for p in backup_dir_for(data_dir).iterdir()) == [
        "trade-history-poe1-Hardcore-2025-01-01_12-00-00-000000.json",
        "trade-history-poe2-Standard-2025-01-01_12-00-00-000000.json",
    ]


def test_skips_unrelated_and_empty_files(data_dir):
    (data_dir / "config.json").write_text("{}", encoding="utf-8")
    (data_dir / "trade-history-poe2-Empty.json").write_text("", encoding="utf-8")

    result = backup_histories(data_dir, now=T0)

    assert "config.json" not in result.backed_up_files
    assert "trade-history-poe2-Empty.json" not in result.backed_up_files
    assert result.total_backups == 2


def test_missing_directory_is_not_an_error(tmp_path):
    result = backup_histories(tmp_path / "nope")

    assert result.success
    assert result.backed_up_files == []


def test_keeps_only_newest_backups(data_dir):
    for minute in range(5):
        backup_histories(data_dir, max_backups_per_file=3, now=T0 + timedelta(minutes=minute))

    backups = list_backups(data_dir, "trade-history-poe2-Standard.json")

    assert len(backups) == 3
    assert backups[0].name == "trade-history-poe2-Standard-2025-01-01_12-04-00-000000.json"
    assert backups[-1].name == "trade-history-poe2-Standard-2025-01-01_12-02-00-000000.json"


def test_cleaned_count_is_reported(data_dir):
    for minute in range(3):
        result = backup_histories(data_dir, max_backups_per_file=2, now=T0 + timedelta(minutes=minute))

    assert result.cleaned_old_backups == 2  # one per history file


def test_list_backups_ignores_similar_league_names(data_dir):
    (data_dir / "trade-history-poe2-Standard-Event.json").write_text('{"entries": []}', encoding="utf-8")
    backup_histories(data_dir, now=T0)

    backups = list_backups(data_dir, "trade-history-poe2-Standard.json")

    assert [p.name for p in backups] == ["trade-history-poe2-Standard-2025-01-01_12-00-00-000000.json"]


def test_prune_keeps_at_least_one(data_dir):
    backup_histories(data_dir, now=T0)

    removed = prune_backups(data_dir, "trade-history-poe2-Standard.json", keep=0)

    assert removed == 0
    assert len(list_backups(data_dir, "trade-history-poe2-Standard.json")) == 1
