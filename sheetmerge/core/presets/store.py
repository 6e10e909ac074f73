from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, TypeVar

from sheetmerge.core.merge.models import MergeRequest

try:
    import fcntl as _fcntl
    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False
    logging.getLogger("sheetmerge.locking").warning(
        "fcntl not available (non-POSIX). File locking is disabled. "
        "Do not share a preset file between processes on this platform."
    )

log = logging.getLogger("sheetmerge.presets")

T = TypeVar("T")


@contextmanager
def _locked_file(path: Path, mode: str) -> Generator:
    """Open a file and apply an exclusive flock (POSIX only). No-op on Windows.

    Buffered writes are flushed to disk before the lock is released.
    """
    with open(path, mode, encoding="utf-8") as fh:
        if _HAS_FCNTL:
            _fcntl.flock(fh, _fcntl.LOCK_EX)
        try:
            yield fh
        finally:
            if fh.writable():
                fh.flush()
                os.fsync(fh.fileno())
            if _HAS_FCNTL:
                _fcntl.flock(fh, _fcntl.LOCK_UN)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def _parse_iso(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _presets_path(workspace_dir: Path) -> Path:
    return workspace_dir / ".sheetmerge" / "presets.json"


def _corrupt_path(path: Path) -> Path:
    stamp = _utc_now().strftime("%Y%m%dT%H%M%S%fZ")
    return path.with_name(f"{path.name}.corrupt-{stamp}")


@dataclass(frozen=True)
class MergePreset:
    name: str
    request: MergeRequest
    saved_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "request": self.request.model_dump(mode="json"),
            "saved_at": self.saved_at,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "MergePreset":
        return MergePreset(
            name=str(d["name"]),
            request=MergeRequest.model_validate(d["request"]),
            saved_at=str(d["saved_at"]),
        )


class MergePresetStore:
    """Named merge configurations, kept for `ttl_hours` after they were saved."""

    def __init__(self, *, workspace_dir: Path, ttl_hours: float = 24.0):
        self.workspace_dir = Path(workspace_dir)
        self.ttl = timedelta(hours=float(ttl_hours))

    def _load(self) -> Dict[str, Any]:
        p = _presets_path(self.workspace_dir)
        if not p.exists():
            return {"kind": "merge_presets", "presets": {}}
        try:
            with _locked_file(p, "r") as fh:
                obj = json.loads(fh.read())
        except (OSError, ValueError) as exc:
            log.warning("preset file %s unreadable, starting empty: %s", p, exc)
            return {"kind": "merge_presets", "presets": {}}
        obj.setdefault("presets", {})
        return obj

    def _mutate(self, fn: Callable[[Dict[str, Any]], T]) -> T:
        """Read, change and write the preset file under a single lock."""
        p = _presets_path(self.workspace_dir)
        p.parent.mkdir(parents=True, exist_ok=True)
        with _locked_file(p, "a+") as fh:
            fh.seek(0)
            text = fh.read()
            try:
                obj = json.loads(text) if text.strip() else {}
            except ValueError as exc:
                backup = _corrupt_path(p)
                backup.write_text(text, encoding="utf-8")
                log.warning("preset file %s unreadable, moved to %s and starting empty: %s", p, backup, exc)
                obj = {}
            obj.setdefault("kind", "merge_presets")
            obj.setdefault("presets", {})

            result = fn(obj)

            fh.seek(0)
            fh.truncate()
            fh.write(json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False))
        return result

    def _expired(self, raw: Dict[str, Any], now: datetime) -> bool:
        try:
            return now - _parse_iso(str(raw["saved_at"])) > self.ttl
        except (KeyError, ValueError):
            return True

    def _prune(self, obj: Dict[str, Any], now: datetime) -> bool:
        stale = [name for name, raw in obj["presets"].items() if self._expired(raw, now)]
        for name in stale:
            del obj["presets"][name]
        if stale:
            log.info("pruned %d expired presets", len(stale))
        return bool(stale)

    def save(self, name: str, request: MergeRequest) -> MergePreset:
        key = (name or "").strip()
        if not key:
            raise ValueError("preset name must not be empty")
        preset = MergePreset(name=key, request=request, saved_at=_iso(_utc_now()))

        def apply(obj: Dict[str, Any]) -> None:
            self._prune(obj, _utc_now())
            obj["presets"][key] = preset.to_dict()

        self._mutate(apply)
        log.info("saved preset=%s mode=%s sources=%d", key, request.mode.value, len(request.source_table_ids))
        return preset

    def get(self, name: str) -> Optional[MergePreset]:
        key = (name or "").strip()
        raw = self._load()["presets"].get(key)
        if raw is None:
            return None
        if self._expired(raw, _utc_now()):
            self._mutate(lambda obj: self._prune(obj, _utc_now()))
            return None
        return MergePreset.from_dict(raw)

    def list(self) -> List[MergePreset]:
        obj = self._load()
        if any(self._expired(raw, _utc_now()) for raw in obj["presets"].values()):
            self._mutate(lambda o: self._prune(o, _utc_now()))
            obj = self._load()
        presets = [MergePreset.from_dict(raw) for raw in obj["presets"].values()]
        return sorted(presets, key=lambda p: p.saved_at, reverse=True)

    def delete(self, name: str) -> bool:
        key = (name or "").strip()
        if key not in self._load()["presets"]:
            return False
        removed = self._mutate(lambda obj: obj["presets"].pop(key, None) is not None)
        if removed:
            log.info("deleted preset=%s", key)
        return removed
