"""
Bot session state.

The rotation state machine owns its session state; everyone else (the
supervisor, status pollers) only ever sees frozen snapshots.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


class RotationState(Enum):
    """States of the raid rotation state machine."""
    IDLE = auto()
    PREPARING_SLOT = auto()
    INJECTING = auto()
    VERIFYING_SEED = auto()
    NAVIGATING_TO_DEN = auto()
    HOSTING_LOBBY = auto()
    AWAITING_PLAYERS = auto()
    RESOLVING_BATTLE = auto()
    COOLDOWN = auto()
    ERROR_RECOVERY = auto()
    STOPPED = auto()


class SessionStatus(Enum):
    """Coarse run status reported to the supervisor."""
    CREATED = auto()
    RUNNING = auto()
    PAUSED = auto()
    STOPPING = auto()
    STOPPED = auto()
    FAULTED = auto()


@dataclass(frozen=True)
class BotSessionState:
    """Read-only snapshot of one bot session."""
    session_id: str
    state: RotationState
    status: SessionStatus
    slot: Optional[int]
    partition: Optional[str]
    request_id: Optional[int]
    seed_mismatches: int
    navigation_failures: int
    transport_escalations: int
    reboots: int
    escalations: int
    raids_hosted: int
    raids_failed: int
    last_error: Optional[str]
    # Slot written this cycle whose raid never resolved (cancel mid-cycle)
    unresolved_injection: Optional[tuple[int, int]]

    @property
    def paused(self) -> bool:
        return self.status == SessionStatus.PAUSED

    @property
    def running(self) -> bool:
        return self.status in (SessionStatus.RUNNING, SessionStatus.PAUSED, SessionStatus.STOPPING)

    @property
    def faulted(self) -> bool:
        return self.status == SessionStatus.FAULTED

    def status_line(self) -> str:
        """One-line status for display."""
        parts = [
            f"[{self.session_id}]",
            self.status.name,
            self.state.name,
            f"slot={self.slot if self.slot is not None else '-'}",
            f"hosted={self.raids_hosted} failed={self.raids_failed}",
        ]
        if self.request_id is not None:
            parts.append(f"req=#{self.request_id}")
        if self.last_error:
            parts.append(f"err={self.last_error}")
        return " | ".join(parts)
