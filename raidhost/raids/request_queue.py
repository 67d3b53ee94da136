"""
Raid Request Queue.

Priority-ordered, thread-safe queue of pending raid requests. Producers (chat
front-ends, the scheduler) enqueue from any thread; every bot session
dequeues from its own thread. A request is handed to exactly one session.
"""

import itertools
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, IntEnum, auto
from typing import Callable, Iterable, Optional

from ..exceptions import QueueFullError
from ..games.pokemon_sv.raid_catalog import MAX_STARS, MAX_STORY_PROGRESS, RaidDefinition

logger = logging.getLogger(__name__)


class Priority(IntEnum):
    """Priority classes; lower value is served first."""
    USER = 0
    ROTATION = 1
    FILLER = 2


class RequestStatus(Enum):
    PENDING = auto()
    IN_FLIGHT = auto()
    FULFILLED = auto()
    FAILED = auto()


class FailureReason(Enum):
    """Reason codes reported back to the requester's channel."""
    SEED_MISMATCH = "seed_mismatch"
    NAVIGATION_FAILED = "navigation_failed"
    LOBBY_FAILED = "lobby_failed"
    NO_PLAYERS = "no_players"
    BATTLE_TIMEOUT = "battle_timeout"
    DISCONNECTED = "disconnected"
    INTERFERENCE = "interference"
    CONNECTION_LOST = "connection_lost"
    POINTER_FAILED = "pointer_failed"
    CONFIG_ERROR = "config_error"
    CANCELLED = "cancelled"


_request_ids = itertools.count(1)


@dataclass
class RaidRequest:
    """
    A request to host one raid.

    Attributes:
        requester: Identity of whoever asked (user handle, "rotation", ...)
        seed: 64-bit raid seed to inject
        species: Species name, interpreted by the legalizer
        stars: Difficulty tier (1-7)
        story_progress: Minimum story progress the seed expects
        priority: Priority class
        partition: Only sessions serving this partition may take it
        notifier: Originating channel; called once when the request ends
    """
    requester: str
    seed: int
    species: str = ""
    stars: int = 1
    story_progress: int = 0
    priority: Priority = Priority.USER
    partition: Optional[str] = None
    notifier: Optional[Callable[["RaidRequest"], None]] = field(default=None, repr=False, compare=False)
    request_id: int = field(default_factory=lambda: next(_request_ids))
    submitted_at: float = field(default_factory=time.time)

    # Outcome
    status: RequestStatus = RequestStatus.PENDING
    failure_reason: Optional[FailureReason] = None
    detail: str = ""
    battle_result: Optional[str] = None
    session_id: Optional[str] = None
    slot: Optional[int] = None
    finished_at: Optional[float] = None

    @classmethod
    def from_definition(
        cls, definition: RaidDefinition, priority: Priority = Priority.ROTATION,
        requester: str = "rotation",
    ) -> "RaidRequest":
        return cls(
            requester=requester,
            seed=definition.seed,
            species=definition.species,
            stars=definition.stars,
            story_progress=definition.story_progress,
            priority=priority,
        )

    def validate(self) -> None:
        """
        Raises:
            ValueError: if the seed, star count or story progress is out of range.
        """
        if not 0 <= self.seed < (1 << 64):
            raise ValueError(f"Seed out of 64-bit range: {self.seed:#x}")
        if not 1 <= self.stars <= MAX_STARS:
            raise ValueError(f"Star count must be 1-{MAX_STARS}, got {self.stars}")
        if not 0 <= self.story_progress <= MAX_STORY_PROGRESS:
            raise ValueError(
                f"Story progress must be 0-{MAX_STORY_PROGRESS}, got {self.story_progress}"
            )

    @property
    def done(self) -> bool:
        return self.status in (RequestStatus.FULFILLED, RequestStatus.FAILED)

    def mark_in_flight(self, session_id: str, slot: int) -> None:
        self.status = RequestStatus.IN_FLIGHT
        self.session_id = session_id
        self.slot = slot

    def fulfill(self, battle_result: str) -> None:
        self.status = RequestStatus.FULFILLED
        self.battle_result = battle_result
        self.finished_at = time.time()
        self._notify()

    def fail(self, reason: FailureReason, detail: str = "") -> None:
        self.status = RequestStatus.FAILED
        self.failure_reason = reason
        self.detail = detail
        self.finished_at = time.time()
        self._notify()

    def _notify(self) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(self)
        except Exception:
            # A broken chat channel must not take the bot session down with it
            logger.exception(f"Notifier for request #{self.request_id} failed")

    def __str__(self) -> str:
        return (f"#{self.request_id} {self.requester} {self.species or '?'} "
                f"{self.stars}* seed=0x{self.seed:016X} [{self.priority.name}]")


class RequestQueue:
    """
    Mapping from priority class to a FIFO of requests.

    Args:
        max_per_user: Pending requests one requester may hold (None = no cap)
        max_total: Pending requests across all classes (None = no cap)
    """

    def __init__(self, max_per_user: Optional[int] = None, max_total: Optional[int] = None):
        self.max_per_user = max_per_user
        self.max_total = max_total
        self._queues: dict[Priority, deque[RaidRequest]] = {p: deque() for p in Priority}
        self._lock = threading.Lock()

    def enqueue(self, request: RaidRequest) -> int:
        """
        Append a request to its class.

        Returns:
            1-based position across the whole queue.

        Raises:
            QueueFullError: if a per-user or global cap would be exceeded.
            ValueError: if the request itself is out of range.
        """
        request.validate()
        with self._lock:
            total = sum(len(q) for q in self._queues.values())
            if self.max_total is not None and total >= self.max_total:
                raise QueueFullError(f"Queue is full ({self.max_total} pending)")
            if self.max_per_user is not None:
                mine = sum(
                    1 for q in self._queues.values() for r in q if r.requester == request.requester
                )
                if mine >= self.max_per_user:
                    raise QueueFullError(
                        f"{request.requester} already has {mine} pending request(s)"
                    )

            request.status = RequestStatus.PENDING
            self._queues[request.priority].append(request)
            position = self._position_locked(request.request_id)

        logger.info(f"Queued {request} at position {position}")
        return position

    def dequeue_next(
        self,
        partition: Optional[str] = None,
        accept: Optional[Callable[[RaidRequest], bool]] = None,
        priorities: Iterable[Priority] = tuple(Priority),
    ) -> Optional[RaidRequest]:
        """
        Take the oldest eligible request of the highest non-empty class.

        A request is eligible when its partition is unset or equals
        `partition`, and `accept` (if given) returns True. Only the classes
        in `priorities` are scanned. Skipped requests keep their place.
        """
        with self._lock:
            for priority in sorted(priorities):
                queue = self._queues[priority]
                for request in queue:
                    if request.partition is not None and request.partition != partition:
                        continue
                    if accept is not None and not accept(request):
                        continue
                    queue.remove(request)
                    request.status = RequestStatus.IN_FLIGHT
                    return request
        return None

    def remove(self, request_id: int) -> bool:
        """Withdraw a pending request. Returns False if it is not queued."""
        with self._lock:
            for queue in self._queues.values():
                for request in queue:
                    if request.request_id == request_id:
                        queue.remove(request)
                        logger.info(f"Removed {request} from queue")
                        return True
        return False

    def position(self, request_id: int) -> Optional[int]:
        with self._lock:
            return self._position_locked(request_id)

    def _position_locked(self, request_id: int) -> Optional[int]:
        pos = 0
        for priority in Priority:
            for request in self._queues[priority]:
                pos += 1
                if request.request_id == request_id:
                    return pos
        return None

    def pending(self, requester: Optional[str] = None) -> list[RaidRequest]:
        with self._lock:
            return [
                r for p in Priority for r in self._queues[p]
                if requester is None or r.requester == requester
            ]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(q) for q in self._queues.values())
