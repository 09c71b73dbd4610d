"""
Timestamped backups of trade history files.

Run at startup (and before cleanup): every non-empty
trade-history-<game>-<league>.json in the data directory is copied into
history-backups/ as trade-history-<game>-<league>-<timestamp>.json, and
only the newest N copies per file are kept.
"""
from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from core.constants import BACKUP_DIR_NAME, HISTORY_FILE_PREFIX, MAX_BACKUPS_PER_FILE

logger = logging.getLogger(__name__)

_HISTORY_FILE = re.compile(rf"^{HISTORY_FILE_PREFIX}-(poe[12])-(.+)\.json$")
_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S-%f"


@dataclass
class BackupResult:
    success: bool = True
    backed_up_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total_backups: int = 0
    cleaned_old_backups: int = 0


def backup_dir_for(data_dir: Path) -> Path:
    return Path(data_dir) / BACKUP_DIR_NAME


def _backup_prefix(stem: str) -> str:
    return f"{stem}-"


def list_backups(data_dir: Path, history_file: Optional[str] = None) -> List[Path]:
    """
    Backups in data_dir, newest first.

    Args:
        history_file: Limit to backups of this history file name
    """
    backup_dir = backup_dir_for(data_dir)
    if not backup_dir.exists():
        return []
    candidates = sorted(backup_dir.glob(f"{HISTORY_FILE_PREFIX}-*.json"), reverse=True)
    if history_file is None:
        return candidates
    prefix = _backup_prefix(Path(history_file).stem)
    return [p for p in candidates if _is_backup_of(p.name, prefix)]


def _is_backup_of(name: str, prefix: str) -> bool:
    if not name.startswith(prefix):
        return False
    stamp = name[len(prefix):-len(".json")]
    try:
        datetime.strptime(stamp, _TIMESTAMP_FORMAT)
    except ValueError:
        return False
    return True


def backup_file(path: Path, now: Optional[datetime] = None) -> Path:
    """Copy one history file into the backup directory. Returns the copy's path."""
    path = Path(path)
    backup_dir = backup_dir_for(path.parent)
    backup_dir.mkdir(parents=True, exist_ok=True)
    stamp = (now or datetime.now()).strftime(_TIMESTAMP_FORMAT)
    target = backup_dir / f"{path.stem}-{stamp}.json"
    shutil.copy2(path, target)
    return target


def prune_backups(data_dir: Path, history_file: str, keep: int) -> int:
    """Delete all but the newest `keep` backups of one file. Returns count removed."""
    removed = 0
    for stale in list_backups(data_dir, history_file)[max(1, keep):]:
        try:
            stale.unlink()
            removed += 1
        except OSError as e:
            logger.warning(f"Failed to delete old backup {stale.name}: {e}")
    return removed


def backup_histories(
    data_dir: Path,
    max_backups_per_file: int = MAX_BACKUPS_PER_FILE,
    now: Optional[datetime] = None,
) -> BackupResult:
    """Back up every history file in data_dir and prune old copies."""
    result = BackupResult()
    data_dir = Path(data_dir)
    if not data_dir.exists():
        logger.info("[Backup] No data directory at %s", data_dir)
        return result

    for path in sorted(data_dir.iterdir()):
        if not path.is_file() or not _HISTORY_FILE.match(path.name):
            continue
        try:
            if path.stat().st_size == 0:
                logger.debug("[Backup] Skipping empty file: %s", path.name)
                continue
            copy = backup_file(path, now)
        except OSError as e:
            result.errors.append(f"Failed to backup {path.name}: {e}")
            result.success = False
            continue
        result.backed_up_files.append(path.name)
        result.total_backups += 1
        logger.debug("[Backup] Created backup: %s", copy.name)
        result.cleaned_old_backups += prune_backups(data_dir, path.name, max_backups_per_file)

    if result.backed_up_files:
        logger.info(
            "[Backup] Backed up %d file(s), cleaned %d old backup(s)",
            len(result.backed_up_files), result.cleaned_old_backups,
        )
    else:
        logger.info("[Backup] No trade history files found to back up")
    return result
