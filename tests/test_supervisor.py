"""Tests for the bot pool supervisor, running sessions on MockConsole threads."""

import threading
import time

import pytest

from raidhost.config import PoolConfig, RaidBotConfig, SessionConfig
from raidhost.console.mock_console import MockConsole
from raidhost.exceptions import ConfigError, InvalidSlotIndexError
from raidhost.games.pokemon_sv.den_locations import CoordinateSource
from raidhost.games.pokemon_sv.raid_catalog import RaidDefinition
from raidhost.raids.request_queue import RaidRequest, RequestQueue, RequestStatus
from raidhost.raids.session import RotationState, SessionStatus
from raidhost.raids.supervisor import BotPoolSupervisor
from raidhost.tracking.raid_history import RaidHistory


CATALOG = [RaidDefinition(0x2222, "Eevee", 3, 0)]
DENS = {
    "paldea": {"paldea-010": (10.0, 0.0, 10.0)},
    "kitakami": {"kitakami-070": (70.0, 0.0, 70.0)},
}


def fast_bot(**overrides):
    values = dict(
        retry_backoff=0.0,
        cooldown_seconds=0.0,
        idle_wait=0.01,
        poll_interval=0.001,
        settle_time=0.0,
        input_cooldown=0.0,
        lobby_open_timeout=1.0,
        lobby_timeout=1.0,
        battle_timeout=1.0,
    )
    values.update(overrides)
    return RaidBotConfig(**values)


class ConsoleFactory:
    """Transport factory that records every console it builds."""

    def __init__(self, broken=0):
        self.broken = broken
        self.built = []
        self._lock = threading.Lock()

    def __call__(self, session, cancel):
        console = MockConsole.with_raid_layout(cancel=cancel)
        with self._lock:
            if len(self.built) < self.broken:
                console.fail_connects = 1_000_000
            self.built.append(console)
        return console


def make_supervisor(bot=None, auto_reset_limit=3, catalog=CATALOG, queue=None, history=None):
    config = PoolConfig(bot=bot or fast_bot(), auto_reset_limit=auto_reset_limit)
    return BotPoolSupervisor(
        config,
        queue if queue is not None else RequestQueue(),
        CoordinateSource.from_mapping(DENS),
        catalog=catalog,
        history=history,
    )


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def cleanup():
    supervisors = []
    yield supervisors.append
    for supervisor in supervisors:
        supervisor.shutdown(drain=False, timeout=5)


class TestLifecycle:

    def test_sessions_host_and_drain(self, cleanup):
        history = RaidHistory()
        supervisor = make_supervisor(history=history)
        cleanup(supervisor)
        factory = ConsoleFactory()
        supervisor.add_session(SessionConfig("s1", "mock", slots=[10]), factory)
        supervisor.add_session(SessionConfig("s2", "mock", slots=[70]), factory)

        supervisor.start()
        assert wait_for(lambda: all(s.raids_hosted >= 1 for s in supervisor.statuses().values()))

        supervisor.stop(drain=True)
        assert supervisor.join("s1", 5)
        assert supervisor.join("s2", 5)

        for snapshot in supervisor.statuses().values():
            assert snapshot.status == SessionStatus.STOPPED
            assert snapshot.state == RotationState.STOPPED
        assert {r.session_id for r in history.raids} == {"s1", "s2"}

    def test_sessions_use_their_own_transport(self, cleanup):
        supervisor = make_supervisor()
        cleanup(supervisor)
        factory = ConsoleFactory()
        supervisor.add_session(SessionConfig("s1", "mock", slots=[10]), factory)
        supervisor.add_session(SessionConfig("s2", "mock", slots=[70]), factory)
        supervisor.start()
        assert wait_for(lambda: all(s.raids_hosted >= 1 for s in supervisor.statuses().values()))
        supervisor.shutdown(drain=True)

        first, second = factory.built
        assert first is not second
        assert first.writes and second.writes

    def test_user_requests_shared_across_sessions(self, cleanup):
        queue = RequestQueue()
        requests = [RaidRequest(requester=f"user{i}", seed=0x100 + i, stars=3) for i in range(6)]
        for request in requests:
            queue.enqueue(request)
        supervisor = make_supervisor(queue=queue, catalog=())
        cleanup(supervisor)
        factory = ConsoleFactory()
        supervisor.add_session(SessionConfig("s1", "mock", slots=[10]), factory)
        supervisor.add_session(SessionConfig("s2", "mock", slots=[70]), factory)

        supervisor.start()
        assert wait_for(lambda: all(r.done for r in requests))
        supervisor.shutdown(drain=True)

        assert all(r.status == RequestStatus.FULFILLED for r in requests)
        assert len(queue) == 0

    def test_cancel_stop(self, cleanup):
        supervisor = make_supervisor()
        cleanup(supervisor)
        supervisor.add_session(SessionConfig("s1", "mock", slots=[10]), ConsoleFactory())
        supervisor.start()
        assert wait_for(lambda: supervisor.status("s1").raids_hosted >= 1)

        supervisor.stop("s1", drain=False)
        assert supervisor.join("s1", 5)
        assert supervisor.status("s1").state == RotationState.STOPPED
        assert supervisor.status("s1").status == SessionStatus.STOPPED

    def test_pause_and_resume(self, cleanup):
        supervisor = make_supervisor()
        cleanup(supervisor)
        supervisor.add_session(SessionConfig("s1", "mock", slots=[10]), ConsoleFactory())
        supervisor.start()
        assert wait_for(lambda: supervisor.status("s1").raids_hosted >= 1)

        supervisor.pause("s1")
        assert wait_for(lambda: supervisor.status("s1").paused)
        hosted = supervisor.status("s1").raids_hosted
        time.sleep(0.1)
        assert supervisor.status("s1").raids_hosted == hosted
        assert supervisor.status("s1").state == RotationState.IDLE

        supervisor.resume("s1")
        assert wait_for(lambda: supervisor.status("s1").raids_hosted > hosted)


class TestReset:

    def test_faulted_session_is_auto_reset(self, cleanup):
        bot = fast_bot(transport_retries=0, transport_escalation_limit=1, max_reboots=1)
        supervisor = make_supervisor(bot=bot)
        cleanup(supervisor)
        factory = ConsoleFactory(broken=1)
        supervisor.add_session(SessionConfig("s1", "mock", slots=[10]), factory)

        supervisor.start()
        assert wait_for(lambda: supervisor.status("s1").raids_hosted >= 1)

        assert supervisor.resets("s1") == 1
        assert len(factory.built) == 2

    def test_reset_limit(self, cleanup):
        bot = fast_bot(transport_retries=0, transport_escalation_limit=1, max_reboots=1)
        supervisor = make_supervisor(bot=bot, auto_reset_limit=2)
        cleanup(supervisor)
        factory = ConsoleFactory(broken=100)
        supervisor.add_session(SessionConfig("s1", "mock", slots=[10]), factory)

        supervisor.start()
        assert supervisor.join("s1", 5)

        assert supervisor.resets("s1") == 2
        assert len(factory.built) == 3
        assert supervisor.status("s1").faulted
        assert "TransportError" in supervisor.status("s1").last_error

    def test_force_reset(self, cleanup):
        supervisor = make_supervisor()
        cleanup(supervisor)
        factory = ConsoleFactory()
        supervisor.add_session(SessionConfig("s1", "mock", slots=[10]), factory)
        supervisor.start()
        assert wait_for(lambda: supervisor.status("s1").raids_hosted >= 1)
        old_console = factory.built[0]

        supervisor.force_reset("s1")

        assert len(factory.built) == 2
        assert not old_console.is_connected()
        assert wait_for(lambda: factory.built[1].writes)
        assert supervisor.resets("s1") == 0

    def test_force_reset_of_idle_session_does_not_start_it(self):
        supervisor = make_supervisor()
        factory = ConsoleFactory()
        supervisor.add_session(SessionConfig("s1", "mock", slots=[10]), factory)

        supervisor.force_reset("s1")

        assert len(factory.built) == 2
        assert supervisor.status("s1").status == SessionStatus.CREATED
        assert factory.built[1].commands == []


class TestRegistration:

    def test_duplicate_session(self):
        supervisor = make_supervisor()
        supervisor.add_session(SessionConfig("s1", "mock"), ConsoleFactory())
        with pytest.raises(ConfigError):
            supervisor.add_session(SessionConfig("s1", "mock"), ConsoleFactory())

    def test_invalid_slot_rejected_up_front(self):
        supervisor = make_supervisor()
        with pytest.raises(InvalidSlotIndexError):
            supervisor.add_session(SessionConfig("s1", "mock", slots=[10, 118]), ConsoleFactory())
        with pytest.raises(KeyError):
            supervisor.status("s1")

    def test_empty_slots_rejected(self):
        supervisor = make_supervisor()
        with pytest.raises(ConfigError):
            supervisor.add_session(SessionConfig("s1", "mock", slots=[]), ConsoleFactory())

    def test_unknown_session(self):
        supervisor = make_supervisor()
        with pytest.raises(KeyError, match="Unknown session"):
            supervisor.pause("ghost")

    def test_listeners_see_every_session(self, cleanup):
        supervisor = make_supervisor()
        cleanup(supervisor)
        seen = set()
        supervisor.add_listener(lambda previous, snapshot: seen.add(snapshot.session_id))
        supervisor.add_listener(lambda previous, snapshot: 1 / 0)
        factory = ConsoleFactory()
        supervisor.add_session(SessionConfig("s1", "mock", slots=[10]), factory)
        supervisor.add_session(SessionConfig("s2", "mock", slots=[70]), factory)

        supervisor.start()
        assert wait_for(lambda: seen == {"s1", "s2"})
        assert wait_for(lambda: all(s.raids_hosted >= 1 for s in supervisor.statuses().values()))
