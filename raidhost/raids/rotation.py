"""
Raid Rotation State Machine.

Drives one bot session through the hosting cycle:

    Idle -> PreparingSlot -> Injecting -> VerifyingSeed -> NavigatingToDen
         -> HostingLobby -> AwaitingPlayers -> ResolvingBattle -> Cooldown
         -> PreparingSlot ...

Any handler that raises a RaidHostError sends the machine through
ErrorRecovery, which classifies the error and either returns to the state
that failed, starts the next cycle, reboots the session or halts it.

Stopped is entered from Idle or Cooldown on a graceful stop, or immediately
when the session's cancel token fires. After a cancel no further device I/O
is issued; a seed already written stays in its slot and is recorded.
"""

import logging
import threading
from typing import Callable, Optional, Sequence, TYPE_CHECKING

from ..config import RaidBotConfig
from ..console.cancel import CancelToken, Deadline
from ..exceptions import (
    ConfigError,
    DenNotFoundError,
    InterferenceDetected,
    InvalidSlotIndexError,
    LobbyError,
    NavigationFailure,
    PointerResolutionError,
    RaidHostError,
    SeedMismatchError,
    SessionCancelled,
    TransportError,
)
from ..games.pokemon_sv.legalizer import EntityLegalizer, RaidContentPacker
from ..games.pokemon_sv.raid_store import BattleStatus, EnvironmentState, RaidStore
from ..input_controller import InputController
from .request_queue import FailureReason, Priority, RaidRequest, RequestQueue
from .session import BotSessionState, RotationState, SessionStatus

if TYPE_CHECKING:
    from ..console.socket_client import SysBotSocketClient
    from ..games.pokemon_sv.den_locations import CoordinateSource
    from ..games.pokemon_sv.navigation import NavigationDriver
    from ..games.pokemon_sv.raid_catalog import RaidDefinition
    from ..tracking.raid_history import RaidHistory

logger = logging.getLogger(__name__)

TransitionListener = Callable[[RotationState, BotSessionState], None]

# Longest single wait while idling, so stop/pause requests are noticed
_WAKE_SLICE = 0.1

# States a pause may not intercept
_UNPAUSABLE = (RotationState.IDLE, RotationState.ERROR_RECOVERY, RotationState.STOPPED)


def is_transport_failure(error: BaseException) -> bool:
    """True for transport errors, including ones surfacing mid pointer walk."""
    if isinstance(error, TransportError):
        return True
    return isinstance(error, PointerResolutionError) and isinstance(error.__cause__, TransportError)


class RotationStateMachine:
    """
    One session's raid hosting loop.

    Args:
        session_id: Name used in logs, snapshots and history
        client: Session transport (owned; never shared between sessions)
        store: Raid store over `client`
        navigator: Navigation driver over `client`
        coordinates: Den coordinate source
        queue: Request queue shared by the pool
        catalog: Scheduled rotation, used when the queue has nothing eligible
        slots: Slot indices this session cycles through
        config: Tunables
        legalizer: Produces the bytes written after the seed
        partition: Queue partition this session serves
        cancel: Session cancel token, shared with the transport
        history: Audit trail for finished requests
    """

    def __init__(
        self,
        session_id: str,
        client: "SysBotSocketClient",
        store: RaidStore,
        navigator: "NavigationDriver",
        coordinates: "CoordinateSource",
        queue: RequestQueue,
        catalog: Sequence["RaidDefinition"] = (),
        slots: Sequence[int] = (0,),
        config: Optional[RaidBotConfig] = None,
        legalizer: Optional[EntityLegalizer] = None,
        partition: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
        history: Optional["RaidHistory"] = None,
    ):
        if not slots:
            raise ConfigError(f"Session {session_id}: no slots to rotate through")

        self.session_id = session_id
        self.client = client
        self.store = store
        self.regions = store.regions
        self.navigator = navigator
        self.coordinates = coordinates
        self.queue = queue
        self.catalog = list(catalog)
        self.slots = list(slots)
        self.config = config or RaidBotConfig()
        self.legalizer = legalizer or RaidContentPacker()
        self.partition = partition
        self.cancel = cancel or CancelToken()
        self.history = history
        self.input = InputController(client, self.config.input_cooldown, self.cancel)

        self.state = RotationState.IDLE
        self.status = SessionStatus.CREATED
        self.last_error: Optional[str] = None

        # Current cycle
        self._request: Optional[RaidRequest] = None
        self._slot: Optional[int] = None
        self._payload = b""
        self._unresolved: Optional[tuple[int, int]] = None

        # Consecutive-failure counters
        self.seed_mismatches = 0
        self.navigation_failures = 0
        self.transport_escalations = 0
        self.lobby_failures = 0
        self.pointer_failures = 0

        # Totals
        self.escalations = 0
        self.reboots = 0
        self.raids_hosted = 0
        self.raids_failed = 0

        # Slots found still holding a seed this session left behind last run
        self.leftover_slots: list[int] = []
        self._leftovers_checked = False

        self._slot_cursor = 0
        self._catalog_cursor = 0
        self._idle_delay = 0.0
        self._error: Optional[RaidHostError] = None
        self._origin = RotationState.IDLE
        self._resume_state: Optional[RotationState] = None

        self._pause_requested = threading.Event()
        self._stop_requested = threading.Event()
        self._start_requested = threading.Event()
        self._lock = threading.Lock()
        self._listeners: list[TransitionListener] = []

        self._handlers = {
            RotationState.IDLE: self._idle,
            RotationState.PREPARING_SLOT: self._prepare_slot,
            RotationState.INJECTING: self._inject,
            RotationState.VERIFYING_SEED: self._verify_seed,
            RotationState.NAVIGATING_TO_DEN: self._navigate,
            RotationState.HOSTING_LOBBY: self._host_lobby,
            RotationState.AWAITING_PLAYERS: self._await_players,
            RotationState.RESOLVING_BATTLE: self._resolve_battle,
            RotationState.COOLDOWN: self._cooldown,
            RotationState.ERROR_RECOVERY: self._recover,
        }

    # =========================================================================
    # Control (callable from any thread)
    # =========================================================================

    def pause(self) -> None:
        """Park in Idle at the next state boundary."""
        self._pause_requested.set()

    def resume(self) -> None:
        self._pause_requested.clear()

    def stop(self) -> None:
        """Finish the current cycle, then stop from Cooldown or Idle."""
        self._stop_requested.set()
        if self.status == SessionStatus.RUNNING:
            self._set_status(SessionStatus.STOPPING)

    def cancel_now(self) -> None:
        """Stop immediately; no further device I/O."""
        self.cancel.cancel()

    def start_raid(self) -> None:
        """Start the battle now instead of waiting for more players."""
        self._start_requested.set()

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def snapshot(self) -> BotSessionState:
        with self._lock:
            return BotSessionState(
                session_id=self.session_id,
                state=self.state,
                status=self.status,
                slot=self._slot,
                partition=self.partition,
                request_id=self._request.request_id if self._request else None,
                seed_mismatches=self.seed_mismatches,
                navigation_failures=self.navigation_failures,
                transport_escalations=self.transport_escalations,
                reboots=self.reboots,
                escalations=self.escalations,
                raids_hosted=self.raids_hosted,
                raids_failed=self.raids_failed,
                last_error=self.last_error,
                unresolved_injection=self._unresolved,
            )

    # =========================================================================
    # Main loop
    # =========================================================================

    def run(self) -> None:
        """Run until Stopped. Blocks the calling thread."""
        logger.info(f"[{self.session_id}] Session starting (slots {self.slots})")
        self._set_status(SessionStatus.RUNNING)
        try:
            while self.state != RotationState.STOPPED:
                self.step()
        except SessionCancelled:
            self._on_cancelled()
        except Exception as e:
            self._fail_request(FailureReason.CONNECTION_LOST, f"session crashed: {e}")
            self.last_error = f"{type(e).__name__}: {e}"
            self._set_status(SessionStatus.FAULTED)
            raise
        finally:
            self.client.close()

        if self.status != SessionStatus.FAULTED:
            self._set_status(SessionStatus.STOPPED)
        logger.info(
            f"[{self.session_id}] Session ended ({self.status.name}): "
            f"{self.raids_hosted} hosted, {self.raids_failed} failed"
        )

    def step(self) -> None:
        """Run the current state's handler once and take the transition."""
        self.cancel.raise_if_cancelled()
        handler = self._handlers[self.state]
        try:
            next_state = handler()
        except SessionCancelled:
            raise
        except RaidHostError as e:
            if self.state == RotationState.ERROR_RECOVERY:
                logger.error(f"[{self.session_id}] Recovery itself failed: {e}")
                self._fail_request(FailureReason.CONNECTION_LOST, str(e))
                self._transition(self._reboot(e))
                return
            self._error = e
            self._origin = self.state
            logger.warning(f"[{self.session_id}] {self.state.name} failed: {e}")
            next_state = RotationState.ERROR_RECOVERY
        else:
            if self.state != RotationState.ERROR_RECOVERY:
                self.transport_escalations = 0

        if self._pause_requested.is_set() and next_state not in _UNPAUSABLE:
            self._resume_state = next_state
            self._set_status(SessionStatus.PAUSED)
            logger.info(f"[{self.session_id}] Pausing before {next_state.name}")
            next_state = RotationState.IDLE

        self._transition(next_state)

    def _transition(self, new_state: RotationState) -> None:
        with self._lock:
            previous = self.state
            self.state = new_state
        if previous != new_state:
            logger.info(f"[{self.session_id}] State transition: {previous.name} → {new_state.name}")
        self._notify(previous)

    def _set_status(self, status: SessionStatus) -> None:
        with self._lock:
            if self.status == status:
                return
            self.status = status
        logger.info(f"[{self.session_id}] Status: {status.name}")
        self._notify(self.state)

    def _notify(self, previous: RotationState) -> None:
        snapshot = self.snapshot()
        for listener in self._listeners:
            try:
                listener(previous, snapshot)
            except Exception:
                logger.exception(f"[{self.session_id}] Transition listener failed")

    # =========================================================================
    # I/O helpers
    # =========================================================================

    def _backoff(self, attempt: int) -> float:
        return min(self.config.retry_backoff * (2 ** max(0, attempt - 1)), self.config.max_backoff)

    def _connect(self) -> None:
        self.client.connect()
        self.store.resolver.invalidate()

    def _call(self, fn, *args, **kwargs):
        """
        Run one transport-backed operation with local retries.

        Reconnects first if the previous failure closed the connection.
        Only transport failures are retried; everything else propagates.
        """
        attempt = 0
        while True:
            self.cancel.raise_if_cancelled()
            try:
                if not self.client.is_connected():
                    self._connect()
                return fn(*args, **kwargs)
            except RaidHostError as e:
                if not is_transport_failure(e) or attempt >= self.config.transport_retries:
                    raise
                attempt += 1
                delay = self._backoff(attempt)
                logger.warning(
                    f"[{self.session_id}] {e}; retry {attempt}/{self.config.transport_retries} "
                    f"in {delay:.1f}s"
                )
                self.cancel.sleep(delay)

    def _probe(self) -> EnvironmentState:
        state = self._call(self.store.probe_environment)
        return self.store.raise_for_interference(state)

    def _tap(self, button: str) -> None:
        self._call(self.input.tap, button)

    def _press_sequence(self, buttons: list[str]) -> None:
        self._call(self.input.press_sequence, buttons, self.config.input_cooldown)

    def _wait(self, seconds: float) -> None:
        """Sleep up to `seconds`, returning early on a stop or pause request."""
        deadline = Deadline(seconds)
        while not deadline.expired:
            if self._stop_requested.is_set() or self._pause_requested.is_set():
                return
            self.cancel.sleep(min(deadline.remaining, _WAKE_SLICE))

    # =========================================================================
    # Request bookkeeping
    # =========================================================================

    def _fail_request(self, reason: FailureReason, detail: str = "") -> None:
        request = self._request
        if request is None or request.done:
            return
        request.fail(reason, detail)
        self.raids_failed += 1
        logger.warning(f"[{self.session_id}] Request {request} failed: {reason.value} {detail}")
        if self.history is not None:
            self.history.record(request)

    def _fulfill_request(self, battle_result: str) -> None:
        request = self._request
        request.fulfill(battle_result)
        self.raids_hosted += 1
        logger.info(f"[{self.session_id}] Request {request} hosted: {battle_result}")
        if self.history is not None:
            self.history.record(request)

    def _clear_cycle(self) -> None:
        with self._lock:
            self._request = None
            self._unresolved = None
            self._payload = b""
        self.seed_mismatches = 0
        self.lobby_failures = 0

    def _eligible(self, story_progress: int) -> Callable[[RaidRequest], bool]:
        max_stars = self.store.unlocked_stars(story_progress)

        def accept(request: RaidRequest) -> bool:
            return request.stars <= max_stars and request.story_progress <= story_progress

        return accept

    def _next_request(self, story_progress: int) -> Optional[RaidRequest]:
        accept = self._eligible(story_progress)
        request = self.queue.dequeue_next(
            partition=self.partition, accept=accept,
            priorities=(Priority.USER, Priority.ROTATION),
        )
        if request is not None:
            return request

        request = self._next_scheduled(accept, story_progress)
        if request is not None:
            return request

        return self.queue.dequeue_next(
            partition=self.partition, accept=accept, priorities=(Priority.FILLER,)
        )

    def _next_scheduled(
        self, accept: Callable[[RaidRequest], bool], story_progress: int
    ) -> Optional[RaidRequest]:
        """Next eligible catalog entry, advancing the rotation cursor."""
        for _ in range(len(self.catalog)):
            if self._catalog_cursor >= len(self.catalog):
                if not self.config.repeat_rotation:
                    return None
                self._catalog_cursor = 0
            definition = self.catalog[self._catalog_cursor]
            self._catalog_cursor += 1
            candidate = RaidRequest.from_definition(definition, Priority.ROTATION)
            if accept(candidate):
                return candidate
            logger.debug(f"[{self.session_id}] Skipping {definition}: not unlocked at {story_progress}")
        return None

    def _check_leftovers(self) -> None:
        """
        Re-read the slots an earlier run of this session wrote and abandoned.

        A slot that still holds the recorded seed is noted in
        `leftover_slots`; one that has been overwritten since is ignored.
        """
        if self.history is None:
            return
        recorded = {
            entry.slot: int(entry.seed, 16)
            for entry in self.history.interrupted
            if entry.session_id == self.session_id and entry.slot in self.slots
        }
        for slot, seed in sorted(recorded.items()):
            current = self._call(self.store.read_slot, slot)
            if current.seed == seed:
                self.leftover_slots.append(slot)
                logger.warning(
                    f"[{self.session_id}] Slot {slot} still holds injected seed 0x{seed:016X} "
                    f"from an earlier run"
                )
            else:
                logger.debug(f"[{self.session_id}] Slot {slot} no longer holds 0x{seed:016X}")

    def _next_slot(self) -> int:
        slot = self.slots[self._slot_cursor % len(self.slots)]
        self._slot_cursor += 1
        return slot

    # =========================================================================
    # State handlers
    # =========================================================================

    def _idle(self) -> RotationState:
        if self.status == SessionStatus.PAUSED or self._pause_requested.is_set():
            self._set_status(SessionStatus.PAUSED)
            while self._pause_requested.is_set() and not self._stop_requested.is_set():
                self.cancel.sleep(_WAKE_SLICE)
            if self._stop_requested.is_set():
                self._resume_state = None
                self._abandon_cycle("stopped while paused")
                return RotationState.STOPPED
            self._set_status(SessionStatus.RUNNING)
            resume, self._resume_state = self._resume_state, None
            logger.info(f"[{self.session_id}] Resuming")
            return resume or RotationState.PREPARING_SLOT

        if self._stop_requested.is_set():
            return RotationState.STOPPED

        delay, self._idle_delay = self._idle_delay, 0.0
        if delay > 0:
            logger.debug(f"[{self.session_id}] Nothing to host, idling {delay:.1f}s")
            self._wait(delay)
            if self._stop_requested.is_set():
                return RotationState.STOPPED
        return RotationState.PREPARING_SLOT

    def _prepare_slot(self) -> RotationState:
        if self._stop_requested.is_set():
            return RotationState.IDLE
        self._clear_cycle()
        if not self._leftovers_checked:
            self._check_leftovers()
            self._leftovers_checked = True

        env = self._probe()
        request = self._next_request(env.story_progress)
        if request is None:
            self._idle_delay = self.config.idle_wait
            return RotationState.IDLE

        slot = self._next_slot()
        request.mark_in_flight(self.session_id, slot)
        with self._lock:
            self._request = request
            self._slot = slot

        try:
            self._payload = self.legalizer.legalize(request)
        except ValueError as e:
            self._fail_request(FailureReason.CONFIG_ERROR, str(e))
            return RotationState.COOLDOWN

        logger.info(f"[{self.session_id}] Hosting {request} in slot {slot} ({env.time_of_day})")
        return RotationState.INJECTING

    def _inject(self) -> RotationState:
        request = self._request
        try:
            self._call(self.store.inject_seed, self._slot, request.seed, self._payload)
        except ValueError as e:
            self._fail_request(FailureReason.CONFIG_ERROR, str(e))
            return RotationState.COOLDOWN
        with self._lock:
            self._unresolved = (self._slot, request.seed)
        return RotationState.VERIFYING_SEED

    def _verify_seed(self) -> RotationState:
        expected = self._request.seed
        actual = self._call(self.store.read_seed, self._slot)
        if actual == expected:
            self.seed_mismatches = 0
            return RotationState.NAVIGATING_TO_DEN

        self.seed_mismatches += 1
        if self.seed_mismatches >= self.config.seed_mismatch_limit:
            raise SeedMismatchError(self._slot, expected, actual)
        logger.warning(
            f"[{self.session_id}] Slot {self._slot} read back 0x{actual:016X}, re-injecting "
            f"({self.seed_mismatches}/{self.config.seed_mismatch_limit})"
        )
        return RotationState.INJECTING

    def _navigate(self) -> RotationState:
        location = self.regions.locate(self._slot)
        den_id = self.regions.den_id(self._slot)
        target = self.coordinates.lookup(location.region_id, den_id)

        actual = self._call(self.navigator.move_to, target, self.config.navigation_timeout)
        distance = actual.distance_to(target)
        threshold = self.config.teleport_distance_threshold
        if distance <= threshold:
            self.navigation_failures = 0
            logger.info(f"[{self.session_id}] At den {den_id} {actual}")
            return RotationState.HOSTING_LOBBY

        self.navigation_failures += 1
        logger.warning(
            f"[{self.session_id}] Teleport to {den_id} missed by {distance:.2f} "
            f"({self.navigation_failures} in a row)"
        )
        if self.navigation_failures == self.config.navigation_refresh_threshold:
            self.coordinates.refresh(location.region_id)
        if self.navigation_failures >= self.config.navigation_failure_limit:
            raise NavigationFailure(den_id, distance, threshold)
        return RotationState.NAVIGATING_TO_DEN

    def _host_lobby(self) -> RotationState:
        self._press_sequence(["A", "A"])

        deadline = Deadline(self.config.lobby_open_timeout)
        while True:
            env = self._probe()
            if env.lobby_open:
                self.lobby_failures = 0
                self._start_requested.clear()
                return RotationState.AWAITING_PLAYERS
            if deadline.expired:
                raise LobbyError(
                    f"Lobby did not open within {self.config.lobby_open_timeout:.1f}s"
                )
            self.cancel.sleep(self.config.poll_interval)

    def _await_players(self) -> RotationState:
        deadline = Deadline(self.config.lobby_timeout)
        while True:
            env = self._probe()
            if env.lobby_players >= self.config.min_players:
                logger.info(f"[{self.session_id}] {env.lobby_players} player(s) joined")
                break
            if self._start_requested.is_set():
                logger.info(f"[{self.session_id}] Starting on request")
                break
            if deadline.expired:
                if not self.config.start_without_players:
                    self._tap("B")
                    self._fail_request(FailureReason.NO_PLAYERS, "lobby timed out")
                    return RotationState.COOLDOWN
                logger.info(f"[{self.session_id}] Lobby timed out, starting solo")
                break
            self.cancel.sleep(self.config.poll_interval)

        self._tap("PLUS")
        return RotationState.RESOLVING_BATTLE

    def _resolve_battle(self) -> RotationState:
        deadline = Deadline(self.config.battle_timeout)
        while True:
            env = self._probe()
            if env.battle_status.terminal:
                break
            if deadline.expired:
                self._fail_request(
                    FailureReason.BATTLE_TIMEOUT,
                    f"no result after {self.config.battle_timeout:.0f}s",
                )
                return RotationState.COOLDOWN
            self.cancel.sleep(self.config.poll_interval)

        # Dismiss the result screen
        self._tap("B")
        if env.battle_status == BattleStatus.DISCONNECT:
            self._fail_request(FailureReason.DISCONNECTED, "console dropped out of the raid")
        else:
            self._fulfill_request(env.battle_status.name.lower())
        return RotationState.COOLDOWN

    def _cooldown(self) -> RotationState:
        self._clear_cycle()
        self.pointer_failures = 0
        self._wait(self.config.cooldown_seconds)
        if self._stop_requested.is_set():
            return RotationState.STOPPED
        return RotationState.PREPARING_SLOT

    # =========================================================================
    # Error recovery
    # =========================================================================

    def _recover(self) -> RotationState:
        error, origin = self._error, self._origin
        self._error = None
        self.escalations += 1
        self.last_error = f"{type(error).__name__}: {error}"
        logger.info(f"[{self.session_id}] Recovering from {type(error).__name__} in {origin.name}")

        if isinstance(error, (InvalidSlotIndexError, DenNotFoundError, ConfigError)):
            self._fail_request(FailureReason.CONFIG_ERROR, str(error))
            return self._halt(error)

        if isinstance(error, InterferenceDetected):
            self._fail_request(FailureReason.INTERFERENCE, str(error))
            if self.config.auto_reboot_on_interference:
                return self._reboot(error)
            return self._halt(error)

        if isinstance(error, SeedMismatchError):
            self._fail_request(FailureReason.SEED_MISMATCH, str(error))
            self.seed_mismatches = 0
            self.cancel.sleep(self._backoff(1))
            return RotationState.PREPARING_SLOT

        if isinstance(error, NavigationFailure):
            self._fail_request(FailureReason.NAVIGATION_FAILED, str(error))
            return self._reboot(error)

        if isinstance(error, LobbyError):
            self.lobby_failures += 1
            if self.lobby_failures < self.config.transport_escalation_limit:
                self._tap("B")
                self.cancel.sleep(self._backoff(self.lobby_failures))
                return RotationState.HOSTING_LOBBY
            self._fail_request(FailureReason.LOBBY_FAILED, str(error))
            return self._reboot(error)

        if is_transport_failure(error):
            self.transport_escalations += 1
            if self.transport_escalations < self.config.transport_escalation_limit:
                self.cancel.sleep(self._backoff(self.transport_escalations))
                return origin
            self._fail_request(FailureReason.CONNECTION_LOST, str(error))
            return self._reboot(error)

        if isinstance(error, PointerResolutionError):
            self.pointer_failures += 1
            self._fail_request(FailureReason.POINTER_FAILED, str(error))
            if self.pointer_failures > self.config.pointer_failure_limit:
                return self._halt(error)
            return self._reboot(error)

        # Remaining RaidHostErrors (e.g. a full queue from a collaborator)
        self._fail_request(FailureReason.CONNECTION_LOST, str(error))
        return self._reboot(error)

    def _reboot(self, error: RaidHostError) -> RotationState:
        """Reconnect the transport, drop every cached address, start a new cycle."""
        self.reboots += 1
        logger.warning(f"[{self.session_id}] Rebooting session after {type(error).__name__}")
        self.client.close()
        self.store.reset()
        self.navigation_failures = 0
        self.transport_escalations = 0
        self._clear_cycle()

        last_error: Optional[TransportError] = None
        for attempt in range(1, self.config.max_reboots + 1):
            try:
                self._connect()
                logger.info(f"[{self.session_id}] Reconnected")
                return RotationState.PREPARING_SLOT
            except TransportError as e:
                delay = self._backoff(attempt)
                logger.warning(
                    f"[{self.session_id}] Reconnect {attempt}/{self.config.max_reboots} failed: {e}"
                )
                if attempt < self.config.max_reboots:
                    self.cancel.sleep(delay)
                last_error = e
        return self._halt(last_error)

    def _halt(self, error: Exception) -> RotationState:
        self.last_error = f"{type(error).__name__}: {error}"
        logger.error(f"[{self.session_id}] Halting: {self.last_error}")
        self._fail_request(FailureReason.CONNECTION_LOST, str(error))
        self._set_status(SessionStatus.FAULTED)
        return RotationState.STOPPED

    def _abandon_cycle(self, detail: str) -> None:
        """Fail the live request and record any seed it left in its slot."""
        self._fail_request(FailureReason.CANCELLED, detail)
        if self._unresolved is not None and self.history is not None:
            slot, seed = self._unresolved
            self.history.record_interrupted(
                self.session_id, slot, seed,
                self._request.request_id if self._request else None,
            )

    def _on_cancelled(self) -> None:
        logger.info(f"[{self.session_id}] Cancelled in {self.state.name}")
        self._abandon_cycle(f"cancelled in {self.state.name}")
        self._transition(RotationState.STOPPED)
