"""Durable snapshot storage for adaptive sessions.

The engine never waits on storage.  A session reads its snapshot once at
start and writes a fresh one after every mutation (write-behind).  Stores
only move JSON-serializable dicts; the schema lives in
``src.models.adaptive.EngineSnapshot``.

Snapshots without a ``version`` key come from the legacy mobile client,
which used camelCase keys.  They are migrated to version 1 on load.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from src.models.adaptive import SNAPSHOT_VERSION, EngineSnapshot

logger = logging.getLogger("lunara.adaptive.store")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


class SnapshotError(ValueError):
    """Raised when a snapshot cannot be interpreted."""


@runtime_checkable
class DurableStore(Protocol):
    def load(self) -> dict | None: ...

    def save(self, snapshot: dict) -> None: ...


class InMemoryStore:
    """Process-local store, mainly for tests and ephemeral sessions."""

    def __init__(self, snapshot: dict | None = None) -> None:
        self._snapshot = copy.deepcopy(snapshot)
        self.saves = 0

    def load(self) -> dict | None:
        return copy.deepcopy(self._snapshot)

    def save(self, snapshot: dict) -> None:
        self._snapshot = copy.deepcopy(snapshot)
        self.saves += 1


class JsonFileStore:
    """Store one snapshot as a JSON file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash never leaves a half-written snapshot.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> dict | None:
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable snapshot at %s: %s", self.path, exc)
            return None
        if not isinstance(raw, dict):
            logger.warning("Snapshot at %s is not a JSON object, ignoring", self.path)
            return None
        return raw

    def save(self, snapshot: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".snapshot-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(snapshot, fh, ensure_ascii=False, indent=2, default=str)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


# ---------------------------------------------------------------------------
# Schema migration
# ---------------------------------------------------------------------------


def _snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def _snake_keys(value: Any) -> Any:
    if not isinstance(value, dict):
        return value
    return {_snake(str(k)): v for k, v in value.items()}


def _migrate_legacy(raw: dict[str, Any]) -> dict[str, Any]:
    """Convert an unversioned camelCase snapshot to the version 1 layout."""
    maturity = _snake_keys(raw.get("maturity"))
    if isinstance(maturity, dict) and "level" not in maturity and "current" in maturity:
        maturity["level"] = maturity.pop("current")

    patterns = raw.get("phasePatterns", raw.get("phase_patterns")) or {}
    return {
        "version": SNAPSHOT_VERSION,
        "metrics": _snake_keys(raw.get("metrics")) or {},
        "maturity": maturity,
        "observations": [_snake_keys(o) for o in raw.get("observations") or [] if isinstance(o, dict)],
        "phase_patterns": {
            str(phase): _snake_keys(pattern) for phase, pattern in patterns.items() if isinstance(pattern, dict)
        },
        "autonomy_signals": _snake_keys(raw.get("autonomySignals", raw.get("autonomy_signals"))) or {},
        "cycle": _snake_keys(raw.get("cycle")) or {},
        "persona": raw.get("persona"),
    }


def parse_snapshot(raw: dict[str, Any]) -> EngineSnapshot:
    """Validate a stored snapshot, migrating legacy layouts.

    Raises:
        SnapshotError: If the version is unsupported or the structure is invalid.
    """
    if "version" not in raw:
        logger.info("Migrating unversioned snapshot to version %d", SNAPSHOT_VERSION)
        raw = _migrate_legacy(raw)

    version = raw.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or not 1 <= version <= SNAPSHOT_VERSION:
        raise SnapshotError(f"Unsupported snapshot version: {version!r}")

    try:
        return EngineSnapshot.model_validate(raw)
    except ValidationError as exc:
        raise SnapshotError(f"Invalid snapshot: {exc}") from exc
