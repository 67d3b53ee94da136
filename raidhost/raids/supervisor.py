"""
Bot Pool Supervisor.

Owns every bot session of a pool: one thread, one transport and one rotation
state machine per session. Sessions share only the request queue, the
coordinate source, the catalog and the history.

A session that halts as FAULTED, or whose thread dies on an unexpected
exception, is rebuilt from scratch (new transport, new state) up to
`auto_reset_limit` times.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, TYPE_CHECKING

from ..config import PoolConfig, SessionConfig
from ..console.cancel import CancelToken
from ..console.socket_client import SysBotSocketClient
from ..exceptions import ConfigError
from ..games.pokemon_sv.navigation import ConsoleNavigator
from ..games.pokemon_sv.pointer_resolver import PointerResolver
from ..games.pokemon_sv.raid_store import RaidStore
from ..games.pokemon_sv.region_map import RegionMap
from .request_queue import RequestQueue
from .rotation import RotationStateMachine, TransitionListener
from .session import BotSessionState

if TYPE_CHECKING:
    from ..games.pokemon_sv.den_locations import CoordinateSource
    from ..games.pokemon_sv.legalizer import EntityLegalizer
    from ..games.pokemon_sv.raid_catalog import RaidDefinition
    from ..tracking.raid_history import RaidHistory

logger = logging.getLogger(__name__)

TransportFactory = Callable[[SessionConfig, CancelToken], SysBotSocketClient]


def socket_transport(command_timeout: float) -> TransportFactory:
    """Factory building a real socket client per session."""

    def build(session: SessionConfig, cancel: CancelToken) -> SysBotSocketClient:
        return SysBotSocketClient(session.host, session.port, timeout=command_timeout, cancel=cancel)

    return build


@dataclass
class _SessionEntry:
    config: SessionConfig
    factory: TransportFactory
    machine: Optional[RotationStateMachine] = None
    thread: Optional[threading.Thread] = None
    resets: int = 0
    stopping: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


class BotPoolSupervisor:
    """
    Starts, pauses, stops and resets bot sessions.

    Args:
        config: Pool configuration (bot tunables, auto-reset limit)
        queue: Request queue shared by every session
        coordinates: Den coordinate source shared by every session
        catalog: Scheduled rotation
        legalizer: Shared legalizer (must be thread-safe if stateful)
        history: Shared raid history
        region_map: Region table (immutable, shared)
    """

    def __init__(
        self,
        config: PoolConfig,
        queue: RequestQueue,
        coordinates: "CoordinateSource",
        catalog: Sequence["RaidDefinition"] = (),
        legalizer: Optional["EntityLegalizer"] = None,
        history: Optional["RaidHistory"] = None,
        region_map: Optional[RegionMap] = None,
    ):
        self.config = config
        self.queue = queue
        self.coordinates = coordinates
        self.catalog = list(catalog)
        self.legalizer = legalizer
        self.history = history
        self.region_map = region_map or RegionMap()

        self._sessions: dict[str, _SessionEntry] = {}
        self._listeners: list[TransitionListener] = []

    # -------------------------------------------------------------------------
    # Session construction
    # -------------------------------------------------------------------------

    def add_session(
        self, session: SessionConfig, transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        """Register a session. It does not run until start()."""
        session.validate()
        if session.session_id in self._sessions:
            raise ConfigError(f"Duplicate session_id: {session.session_id}")
        for slot in session.slots:
            # InvalidSlotIndexError here beats a FAULTED session later
            self.region_map.locate(slot)

        factory = transport_factory or socket_transport(self.config.bot.command_timeout)
        entry = _SessionEntry(config=session, factory=factory)
        entry.machine = self._build(entry)
        self._sessions[session.session_id] = entry
        logger.info(f"Added session {session.session_id} ({session.host}:{session.port})")

    def _build(self, entry: _SessionEntry) -> RotationStateMachine:
        session = entry.config
        bot = self.config.bot
        cancel = CancelToken()
        client = entry.factory(session, cancel)
        resolver = PointerResolver(client)
        store = RaidStore(client, self.region_map, resolver)
        navigator = ConsoleNavigator(client, resolver, bot.settle_time, cancel)
        machine = RotationStateMachine(
            session_id=session.session_id,
            client=client,
            store=store,
            navigator=navigator,
            coordinates=self.coordinates,
            queue=self.queue,
            catalog=self.catalog,
            slots=session.slots,
            config=bot,
            legalizer=self.legalizer,
            partition=session.partition,
            cancel=cancel,
            history=self.history,
        )
        machine.add_listener(self._on_transition)
        return machine

    def _entry(self, session_id: str) -> _SessionEntry:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise KeyError(f"Unknown session: {session_id}") from None

    def _ids(self, session_id: Optional[str]) -> list[str]:
        return list(self._sessions) if session_id is None else [self._entry(session_id).config.session_id]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, session_id: Optional[str] = None) -> None:
        """Start one session, or every session when no id is given."""
        for sid in self._ids(session_id):
            entry = self._sessions[sid]
            with entry.lock:
                if entry.thread is not None and entry.thread.is_alive():
                    logger.debug(f"Session {sid} already running")
                    continue
                entry.stopping = False
                self._spawn(entry)

    def _spawn(self, entry: _SessionEntry) -> None:
        entry.thread = threading.Thread(
            target=self._run_session,
            args=(entry,),
            name=f"raidhost-{entry.config.session_id}",
            daemon=True,
        )
        entry.thread.start()

    def _run_session(self, entry: _SessionEntry) -> None:
        sid = entry.config.session_id
        while True:
            machine = entry.machine
            crashed = False
            try:
                machine.run()
            except Exception:
                logger.exception(f"Session {sid} crashed")
                crashed = True

            if entry.stopping or not (crashed or machine.snapshot().faulted):
                return
            with entry.lock:
                if entry.machine is not machine:
                    # force_reset already replaced it
                    return
                if entry.resets >= self.config.auto_reset_limit:
                    logger.error(f"Session {sid} faulted; auto-reset limit reached")
                    return
                entry.resets += 1
                logger.warning(
                    f"Auto-resetting session {sid} ({entry.resets}/{self.config.auto_reset_limit})"
                )
                entry.machine = self._build(entry)

    def pause(self, session_id: Optional[str] = None) -> None:
        for sid in self._ids(session_id):
            self._sessions[sid].machine.pause()

    def resume(self, session_id: Optional[str] = None) -> None:
        for sid in self._ids(session_id):
            self._sessions[sid].machine.resume()

    def stop(self, session_id: Optional[str] = None, drain: bool = True) -> None:
        """
        Stop sessions.

        Args:
            drain: Let the current raid finish and stop from Cooldown/Idle.
                When False the session is cancelled immediately.
        """
        for sid in self._ids(session_id):
            entry = self._sessions[sid]
            entry.stopping = True
            if drain:
                entry.machine.stop()
            else:
                entry.machine.cancel_now()
            logger.info(f"Stopping session {sid} ({'drain' if drain else 'cancel'})")

    def force_reset(self, session_id: str, timeout: Optional[float] = 10.0) -> None:
        """Tear the session down and start it again with a new transport and state."""
        entry = self._entry(session_id)
        was_running = entry.thread is not None and entry.thread.is_alive()
        with entry.lock:
            old = entry.machine
            entry.machine = self._build(entry)
        old.cancel_now()
        if entry.thread is not None:
            entry.thread.join(timeout)
        logger.info(f"Session {session_id} reset")
        if was_running:
            self.start(session_id)

    def join(self, session_id: str, timeout: Optional[float] = None) -> bool:
        """Wait for a session thread. Returns True if it has finished."""
        entry = self._entry(session_id)
        if entry.thread is None:
            return True
        entry.thread.join(timeout)
        return not entry.thread.is_alive()

    def shutdown(self, drain: bool = False, timeout: Optional[float] = 10.0) -> None:
        """Stop every session and wait for the threads."""
        self.stop(drain=drain)
        for sid in list(self._sessions):
            if not self.join(sid, timeout):
                logger.warning(f"Session {sid} did not stop within {timeout}s")

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def status(self, session_id: str) -> BotSessionState:
        return self._entry(session_id).machine.snapshot()

    def statuses(self) -> dict[str, BotSessionState]:
        return {sid: entry.machine.snapshot() for sid, entry in self._sessions.items()}

    def resets(self, session_id: str) -> int:
        return self._entry(session_id).resets

    def add_listener(self, listener: TransitionListener) -> None:
        """Called with (previous_state, snapshot) on every session transition."""
        self._listeners.append(listener)

    def _on_transition(self, previous, snapshot: BotSessionState) -> None:
        for listener in self._listeners:
            try:
                listener(previous, snapshot)
            except Exception:
                logger.exception(f"Supervisor listener failed for {snapshot.session_id}")
