"""
Raid History for the hosting bot.

Keeps an audit trail of every request that finished (fulfilled or failed)
and of every slot a session wrote but never saw through to a battle result.
The latter matters because writes are not rolled back: after a cancel or a
crash the slot still holds the injected seed, and whoever restarts the bot
needs to know which slots those are.

Saved to disk as JSON and can be displayed on stream.
"""

import json
import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from ..exceptions import ConfigError

if TYPE_CHECKING:
    from ..raids.request_queue import RaidRequest

logger = logging.getLogger(__name__)


@dataclass
class RaidRecord:
    """One finished request."""
    request_id: int
    requester: str
    seed: str
    species: str
    stars: int
    priority: str
    status: str
    session_id: Optional[str] = None
    slot: Optional[int] = None
    failure_reason: Optional[str] = None
    battle_result: Optional[str] = None
    detail: str = ""
    submitted_at: float = 0.0
    finished_at: float = 0.0

    @classmethod
    def from_request(cls, request: "RaidRequest") -> "RaidRecord":
        return cls(
            request_id=request.request_id,
            requester=request.requester,
            seed=f"0x{request.seed:016X}",
            species=request.species,
            stars=request.stars,
            priority=request.priority.name,
            status=request.status.name,
            session_id=request.session_id,
            slot=request.slot,
            failure_reason=request.failure_reason.value if request.failure_reason else None,
            battle_result=request.battle_result,
            detail=request.detail,
            submitted_at=request.submitted_at,
            finished_at=request.finished_at or time.time(),
        )


@dataclass
class InterruptedInjection:
    """A slot that was written to and then left behind."""
    session_id: str
    slot: int
    seed: str
    request_id: Optional[int] = None
    timestamp: float = 0.0


@dataclass
class HistorySnapshot:
    raids: list[RaidRecord] = field(default_factory=list)
    interrupted: list[InterruptedInjection] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class RaidHistory:
    """
    Shared by every session of a pool; all methods are thread-safe.

    Call set_save_path() to auto-save after every change.
    """

    def __init__(self):
        self._snapshot = HistorySnapshot()
        self._lock = threading.Lock()
        self._save_path: Optional[Path] = None

    def set_save_path(self, path: Path):
        """Set path for auto-saving history."""
        self._save_path = Path(path)
        self._save_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def raids(self) -> list[RaidRecord]:
        with self._lock:
            return list(self._snapshot.raids)

    @property
    def interrupted(self) -> list[InterruptedInjection]:
        with self._lock:
            return list(self._snapshot.interrupted)

    def record(self, request: "RaidRequest") -> RaidRecord:
        """Append a finished request."""
        entry = RaidRecord.from_request(request)
        with self._lock:
            self._snapshot.raids.append(entry)
        self._save()
        return entry

    def record_interrupted(
        self, session_id: str, slot: int, seed: int, request_id: Optional[int] = None,
    ) -> InterruptedInjection:
        """Note a slot whose injected seed was never resolved."""
        entry = InterruptedInjection(
            session_id=session_id,
            slot=slot,
            seed=f"0x{seed:016X}",
            request_id=request_id,
            timestamp=time.time(),
        )
        with self._lock:
            self._snapshot.interrupted.append(entry)
        logger.warning(
            f"[{session_id}] Slot {slot} left holding seed {entry.seed} (request #{request_id})"
        )
        self._save()
        return entry

    def summary(self) -> str:
        """Human-readable history summary."""
        with self._lock:
            raids = list(self._snapshot.raids)
            interrupted = list(self._snapshot.interrupted)

        fulfilled = [r for r in raids if r.status == "FULFILLED"]
        reasons = Counter(r.failure_reason for r in raids if r.failure_reason)
        lines = [
            "=== Raid History ===",
            f"Requests finished: {len(raids)}",
            f"Hosted: {len(fulfilled)}",
            f"Failed: {len(raids) - len(fulfilled)}",
        ]
        for reason, count in reasons.most_common():
            lines.append(f"  {reason}: {count}")
        if interrupted:
            lines.append(f"Slots left with injected seeds: {len(interrupted)}")
            for entry in interrupted:
                lines.append(f"  {entry.session_id} slot {entry.slot} {entry.seed}")
        return "\n".join(lines)

    def _save(self):
        """Save history to the JSON file, if one is set."""
        if not self._save_path:
            return
        # Saves must not interleave; the lock covers the write
        with self._lock:
            data = self._snapshot.to_dict()
            try:
                with open(self._save_path, 'w') as f:
                    json.dump(data, f, indent=2)
            except OSError as e:
                logger.error(f"Failed to save raid history: {e}")

    @classmethod
    def load(cls, path: Path) -> "RaidHistory":
        """
        Load a previously saved history; keeps auto-saving to the same file.

        Raises:
            ConfigError: if the file exists but cannot be read or parsed.
        """
        history = cls()
        path = Path(path)
        if path.exists():
            try:
                with open(path, 'r') as f:
                    data = json.load(f)
                history._snapshot = HistorySnapshot(
                    raids=[RaidRecord(**r) for r in data.get("raids", [])],
                    interrupted=[InterruptedInjection(**i) for i in data.get("interrupted", [])],
                )
            except (OSError, ValueError, TypeError, AttributeError) as e:
                raise ConfigError(f"Cannot read raid history {path}: {e}") from e
            logger.info(
                f"Loaded raid history from {path}: {len(history._snapshot.raids)} raid(s)"
            )
        history.set_save_path(path)
        return history
