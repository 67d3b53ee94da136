"""Tests for the raid store: injection, read-back and environment probes."""

import struct

import pytest

from raidhost.console.mock_console import MockConsole
from raidhost.exceptions import InterferenceDetected, InvalidSlotIndexError
from raidhost.games.pokemon_sv.memory_map import PokemonSVMemory as Mem
from raidhost.games.pokemon_sv.raid_store import BattleStatus, EnvironmentState, RaidStore
from raidhost.games.pokemon_sv.region_map import RegionMap


SEED = 0xABCDEF0123456789


def make_store(story_progress=6, **kwargs):
    console = MockConsole.with_raid_layout(story_progress=story_progress, **kwargs)
    console.connect()
    return console, RaidStore(console, RegionMap())


class TestInjection:

    def test_round_trip(self):
        _, store = make_store()
        store.inject_seed(10, SEED)
        assert store.read_seed(10) == SEED

    def test_single_write_with_metadata(self):
        console, store = make_store()
        metadata = struct.pack("<IHBB", 5, 25, 6, 0)
        store.inject_seed(10, SEED, metadata)

        assert len(console.writes) == 1
        address, data = console.writes[0]
        assert address == store.slot_address(10) + Mem.RECORD_SEED_OFFSET
        assert data == struct.pack("<Q", SEED) + metadata

    def test_neighbouring_slots_untouched(self):
        _, store = make_store()
        store.inject_seed(10, SEED)
        assert store.read_seed(9) == 0
        assert store.read_seed(11) == 0

    def test_every_region(self):
        _, store = make_store()
        for index in (0, 68, 69, 93, 94, 117):
            store.inject_seed(index, SEED + index)
        for index in (0, 68, 69, 93, 94, 117):
            assert store.read_seed(index) == SEED + index

    def test_seed_out_of_range(self):
        console, store = make_store()
        with pytest.raises(ValueError):
            store.inject_seed(10, 1 << 64)
        with pytest.raises(ValueError):
            store.inject_seed(10, -1)
        assert console.writes == []

    def test_metadata_too_long(self):
        console, store = make_store()
        with pytest.raises(ValueError):
            store.inject_seed(10, SEED, bytes(9))
        assert console.writes == []

    def test_invalid_slot(self):
        console, store = make_store()
        with pytest.raises(InvalidSlotIndexError):
            store.inject_seed(118, SEED)
        assert console.writes == []

    def test_read_slot_decodes_record(self):
        console, store = make_store()
        address = store.slot_address(70)
        console.poke(address, struct.pack("<IIII", 1, 3, 7, 42))
        store.inject_seed(70, SEED, struct.pack("<IHBB", 4, 133, 3, 0))

        slot = store.read_slot(70)
        assert slot.region_id == "kitakami"
        assert slot.address == address
        assert slot.enabled is True
        assert slot.den == 42
        assert slot.seed == SEED
        assert slot.difficulty == 4
        assert slot.species == 133
        assert slot.story_progress == 3

    def test_block_address_cached_until_reset(self):
        console, store = make_store()
        store.slot_address(10)
        store.slot_address(11)
        reads = len(console.commands)
        store.slot_address(12)
        assert len(console.commands) == reads

        store.reset()
        store.slot_address(12)
        assert len(console.commands) > reads


class TestEnvironment:

    def test_probe_reads_status(self):
        console, store = make_store(story_progress=4)
        state = store.probe_environment()
        assert state.story_progress == 4
        assert state.lobby_open is False
        assert state.battle_status == BattleStatus.NONE
        assert state.interference is False

    def test_lobby_and_battle_flags(self):
        console, store = make_store()
        console.click("A")
        assert store.probe_environment().lobby_open is True
        console.click("PLUS")
        assert store.probe_environment().battle_status == BattleStatus.ONGOING

    def test_interference_detected(self):
        console, store = make_store()
        store.probe_environment()
        console.shift_memory()
        state = store.probe_environment()
        assert state.interference is True
        with pytest.raises(InterferenceDetected):
            RaidStore.raise_for_interference(state)

    def test_reset_takes_new_baseline(self):
        console, store = make_store()
        store.probe_environment()
        console.shift_memory()
        store.reset()
        assert store.probe_environment().interference is False

    def test_unlocked_stars(self):
        _, store = make_store()
        assert store.unlocked_stars(0) == 2
        assert store.unlocked_stars(6) == 7
        assert store.unlocked_stars(99) == 7

    def test_time_of_day(self):
        assert EnvironmentState(clock_seconds=8 * 3600).time_of_day == "day"
        assert EnvironmentState(clock_seconds=19 * 3600).time_of_day == "evening"
        assert EnvironmentState(clock_seconds=2 * 3600).time_of_day == "night"


class TestInjectThenNavigate:
    """Inject at slot 10, verify, teleport to paldea-010, open the lobby."""

    def test_slot_ten_end_to_end(self):
        from raidhost.games.pokemon_sv.den_locations import CoordinateSource
        from raidhost.games.pokemon_sv.navigation import ConsoleNavigator

        console, store = make_store()
        regions = store.regions
        assert regions.locate(10).region_id == "paldea"
        assert regions.locate(10).offset == 10 * 0x20

        store.inject_seed(10, SEED)
        assert store.read_seed(10) == SEED

        coordinates = CoordinateSource.from_mapping({"paldea": {"paldea-010": (120.0, 4.0, -33.5)}})
        target = coordinates.lookup("paldea", regions.den_id(10))
        navigator = ConsoleNavigator(console, store.resolver, settle_time=0)
        actual = navigator.move_to(target, timeout=1.0)
        assert actual.distance_to(target) == pytest.approx(0.0)

        navigator.press_button("A")
        assert store.probe_environment().lobby_open is True
