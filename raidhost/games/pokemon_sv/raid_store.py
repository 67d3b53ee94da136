"""
Raid Store.

Read/write facade over the raid blocks: seed injection, read-back
verification and environment probes. Used by the rotation state machine.

Injection and verification are separate calls on purpose. A failed write
and a write that the game overwrote before we looked need different
remedies (resend vs. restart navigation), and only a separate read-back can
tell them apart.
"""

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, TYPE_CHECKING

from ...exceptions import InterferenceDetected
from .memory_map import PokemonSVMemory as Mem
from .pointer_resolver import PointerResolver
from .region_map import RegionMap

if TYPE_CHECKING:
    from ...console.socket_client import SysBotSocketClient

logger = logging.getLogger(__name__)


class BattleStatus(IntEnum):
    """Battle byte in the game status block."""
    NONE = 0
    ONGOING = 1
    VICTORY = 2
    DEFEAT = 3
    DISCONNECT = 4

    @property
    def terminal(self) -> bool:
        return self in (BattleStatus.VICTORY, BattleStatus.DEFEAT, BattleStatus.DISCONNECT)


@dataclass(frozen=True)
class EnvironmentState:
    """One snapshot of the game status block plus the interference check."""
    clock_seconds: int = 0
    story_progress: int = 0
    season_flags: int = 0
    lobby_open: bool = False
    lobby_players: int = 0
    battle_status: BattleStatus = BattleStatus.NONE
    interference: bool = False

    @property
    def time_of_day(self) -> str:
        hour = (self.clock_seconds // 3600) % 24
        if 6 <= hour < 18:
            return "day"
        if 18 <= hour < 20:
            return "evening"
        return "night"


@dataclass(frozen=True)
class RaidSlot:
    """Decoded contents of one raid record."""
    index: int
    region_id: str
    address: int
    enabled: bool
    den: int
    seed: int
    content: int
    species: int
    story_progress: int

    @property
    def difficulty(self) -> int:
        return self.content


class RaidStore:
    """
    Raid block access for one session.

    Resolved block addresses are cached until reset(); the heap only moves
    on a game restart or overlay interference, both of which end in a
    session reboot.
    """

    def __init__(
        self,
        client: "SysBotSocketClient",
        region_map: RegionMap,
        resolver: Optional[PointerResolver] = None,
        memory_class: type = Mem,
    ):
        self.client = client
        self.regions = region_map
        self.mem = memory_class
        self.resolver = resolver or PointerResolver(client, memory_class.HEAP_MIN, memory_class.HEAP_MAX)
        self._block_cache: dict[str, int] = {}

        # Interference baseline, captured once per boot
        self._baseline_main: Optional[int] = None
        self._baseline_signature: Optional[bytes] = None

    def reset(self) -> None:
        """Drop every cached address and the interference baseline."""
        self._block_cache.clear()
        self.resolver.invalidate()
        self._baseline_main = None
        self._baseline_signature = None

    # -------------------------------------------------------------------------
    # Addressing
    # -------------------------------------------------------------------------

    def block_address(self, region_id: str) -> int:
        """Address of the first record of a region (block + header)."""
        if region_id not in self._block_cache:
            region = self.regions.region(region_id)
            block = self.resolver.resolve_chain(region.block_pointer)
            self._block_cache[region_id] = block + region.header_offset
            logger.debug(f"Raid block {region_id}: 0x{self._block_cache[region_id]:X}")
        return self._block_cache[region_id]

    def slot_address(self, index: int) -> int:
        location = self.regions.locate(index)
        return self.block_address(location.region_id) + location.offset

    # -------------------------------------------------------------------------
    # Seeds
    # -------------------------------------------------------------------------

    def inject_seed(self, index: int, seed: int, metadata: bytes = b"") -> None:
        """
        Write seed + metadata into a slot as one transport write.

        Raises:
            ValueError: if the seed is not 64-bit or metadata is too long.
            InvalidSlotIndexError, PointerResolutionError, TransportError
        """
        if not 0 <= seed < (1 << 64):
            raise ValueError(f"Seed out of 64-bit range: {seed:#x}")
        if len(metadata) > self.mem.RECORD_METADATA_SIZE:
            raise ValueError(
                f"Metadata is {len(metadata)} bytes, record holds {self.mem.RECORD_METADATA_SIZE}"
            )

        address = self.slot_address(index) + self.mem.RECORD_SEED_OFFSET
        payload = struct.pack("<Q", seed) + bytes(metadata)
        self.client.write(address, payload)
        logger.info(f"Injected seed 0x{seed:016X} into slot {index} @ 0x{address:X}")

    def read_seed(self, index: int) -> int:
        """Read a slot's seed back. Verification only."""
        address = self.slot_address(index) + self.mem.RECORD_SEED_OFFSET
        return struct.unpack("<Q", self.client.read(address, self.mem.RECORD_SEED_SIZE))[0]

    def read_slot(self, index: int) -> RaidSlot:
        """Read and decode a whole raid record."""
        location = self.regions.locate(index)
        address = self.block_address(location.region_id) + location.offset
        data = self.client.read(address, self.mem.RAID_RECORD_SIZE)

        enabled = struct.unpack_from("<I", data, self.mem.RECORD_ENABLED_OFFSET)[0]
        den = struct.unpack_from("<I", data, self.mem.RECORD_DEN_OFFSET)[0]
        seed = struct.unpack_from("<Q", data, self.mem.RECORD_SEED_OFFSET)[0]
        content, species, story, _flags = struct.unpack_from(
            "<IHBB", data, self.mem.RECORD_METADATA_OFFSET
        )
        return RaidSlot(
            index=index,
            region_id=location.region_id,
            address=address,
            enabled=bool(enabled),
            den=den,
            seed=seed,
            content=content,
            species=species,
            story_progress=story,
        )

    # -------------------------------------------------------------------------
    # Environment
    # -------------------------------------------------------------------------

    def capture_baseline(self) -> None:
        """Remember main base and signature bytes for interference checks."""
        main = self.resolver.main_base
        self._baseline_main = main
        self._baseline_signature = self.client.read(
            main + self.mem.SIGNATURE_OFFSET, self.mem.SIGNATURE_SIZE
        )
        logger.debug(f"Interference baseline captured: {self._baseline_signature.hex()}")

    def _interference(self) -> bool:
        if self._baseline_signature is None:
            self.capture_baseline()
            return False

        # Ask the console again rather than trusting the cached base
        main = self.client.get_main_base()
        if main != self._baseline_main:
            logger.warning(f"Main base moved: 0x{self._baseline_main:X} -> 0x{main:X}")
            return True
        signature = self.client.read(main + self.mem.SIGNATURE_OFFSET, self.mem.SIGNATURE_SIZE)
        if signature != self._baseline_signature:
            logger.warning(f"Signature changed: {self._baseline_signature.hex()} -> {signature.hex()}")
            return True
        return False

    def probe_environment(self) -> EnvironmentState:
        """Read the game status block and run the interference check."""
        interference = self._interference()
        address = self.resolver.resolve_chain(self.mem.STATUS_BLOCK)
        data = self.client.read(address, self.mem.STATUS_BLOCK_SIZE)

        battle_raw = data[self.mem.STATUS_BATTLE_OFFSET]
        try:
            battle = BattleStatus(battle_raw)
        except ValueError:
            logger.warning(f"Unknown battle status byte {battle_raw}")
            battle = BattleStatus.NONE

        return EnvironmentState(
            clock_seconds=struct.unpack_from("<I", data, self.mem.STATUS_CLOCK_OFFSET)[0],
            story_progress=data[self.mem.STATUS_STORY_OFFSET],
            season_flags=data[self.mem.STATUS_SEASON_OFFSET],
            lobby_open=bool(data[self.mem.STATUS_LOBBY_STATE_OFFSET]),
            lobby_players=data[self.mem.STATUS_LOBBY_PLAYERS_OFFSET],
            battle_status=battle,
            interference=interference,
        )

    @staticmethod
    def raise_for_interference(state: EnvironmentState) -> EnvironmentState:
        if state.interference:
            raise InterferenceDetected("Memory layout changed since session start")
        return state

    def unlocked_stars(self, story_progress: int) -> int:
        """Highest raid star tier the console can host at this progress."""
        table = self.mem.STARS_BY_PROGRESS
        return table[max(0, min(story_progress, len(table) - 1))]
