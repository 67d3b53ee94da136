"""
Pokemon Scarlet/Violet Memory Map.

Pointer chains and record layouts for the raid hosting bot.

CRITICAL: the game allocates everything on the heap, and the heap moves
between boots (and whenever an overlay applet is opened). Nothing here is an
absolute address. You MUST resolve pointer chains:
    1. Add the root offset to the main executable base (getMainNsoBase)
    2. Read the 8-byte pointer there, add the next offset
    3. Repeat for every offset; the last sum is the address to use

Address notation:
- Roots: offsets from the main executable base
- Offsets: added to each dereferenced 64-bit pointer
- Platform: Nintendo Switch (ARM64, little-endian, 64-bit pointers)

Game version: 3.0.1 (title 0100A3D008C5C000 / 01008F6008C5E000)
"""

import struct
from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class PointerChain:
    """
    A symbolic pointer: main-relative root plus dereference offsets.

    Resolving a chain with k offsets takes exactly k remote reads.
    """
    root: int
    offsets: tuple[int, ...]

    def __str__(self) -> str:
        steps = "".join(f"]+0x{o:X}" for o in self.offsets)
        return "[" * len(self.offsets) + f"main+0x{self.root:X}" + steps


@dataclass(frozen=True)
class PokemonSVMemory:
    """
    Pointer chains and layouts for Pokemon Scarlet/Violet.

    Raid blocks for the three regions hang off the same save-data root but
    sit at different final offsets, and the Paldea block carries a larger
    header than the two DLC blocks. See region_map.DEFAULT_REGIONS.
    """

    # =========================================================================
    # RAID BLOCK POINTERS (one per region)
    # =========================================================================

    RAID_BLOCK_PALDEA: ClassVar[PointerChain] = PointerChain(0x47350D8, (0x1C0, 0x88, 0x40))
    RAID_BLOCK_KITAKAMI: ClassVar[PointerChain] = PointerChain(0x47350D8, (0x1C0, 0x88, 0xCD8))
    RAID_BLOCK_BLUEBERRY: ClassVar[PointerChain] = PointerChain(0x47350D8, (0x1C0, 0x88, 0x1958))

    # Header in front of the first raid record of each block
    PALDEA_HEADER_SIZE: ClassVar[int] = 0x20
    DLC_HEADER_SIZE: ClassVar[int] = 0x10

    # =========================================================================
    # RAID RECORD (per slot, offsets from the slot base)
    # =========================================================================

    RAID_RECORD_SIZE: ClassVar[int] = 0x20
    RECORD_ENABLED_OFFSET: ClassVar[int] = 0x00     # u32
    RECORD_AREA_OFFSET: ClassVar[int] = 0x04        # u32
    RECORD_LOTTERY_OFFSET: ClassVar[int] = 0x08     # u32
    RECORD_DEN_OFFSET: ClassVar[int] = 0x0C         # u32, spawn point id
    RECORD_SEED_OFFSET: ClassVar[int] = 0x10        # u64
    RECORD_SEED_SIZE: ClassVar[int] = 8
    RECORD_METADATA_OFFSET: ClassVar[int] = 0x18    # content u32, species u16, story u8, flags u8
    RECORD_METADATA_SIZE: ClassVar[int] = 8

    # =========================================================================
    # GAME STATUS BLOCK (clock, story progress, lobby, battle)
    # =========================================================================

    STATUS_BLOCK: ClassVar[PointerChain] = PointerChain(0x4744D20, (0x30, 0x1A8))
    STATUS_BLOCK_SIZE: ClassVar[int] = 0x10
    STATUS_CLOCK_OFFSET: ClassVar[int] = 0x00          # u32, seconds since midnight
    STATUS_STORY_OFFSET: ClassVar[int] = 0x04          # u8, 0-6
    STATUS_SEASON_OFFSET: ClassVar[int] = 0x05         # u8, bitfield
    STATUS_LOBBY_STATE_OFFSET: ClassVar[int] = 0x06    # u8, 0 closed / 1 open
    STATUS_LOBBY_PLAYERS_OFFSET: ClassVar[int] = 0x07  # u8, guests in lobby
    STATUS_BATTLE_OFFSET: ClassVar[int] = 0x08         # u8, see raid_store.BattleStatus

    # =========================================================================
    # PLAYER POSITION (three float32: x, y, z)
    # =========================================================================

    PLAYER_POSITION: ClassVar[PointerChain] = PointerChain(0x4761AA8, (0x48, 0x108, 0x80))
    PLAYER_POSITION_SIZE: ClassVar[int] = 12

    # =========================================================================
    # INTERFERENCE SIGNATURE (main-relative, read directly)
    # =========================================================================

    # First instructions of the raid lobby update routine. Overlays that
    # remap memory make this read differ from the baseline.
    SIGNATURE_OFFSET: ClassVar[int] = 0x01F8C3A0
    SIGNATURE_SIZE: ClassVar[int] = 16

    # =========================================================================
    # HEAP BOUNDS (sanity guard for every dereference)
    # =========================================================================

    HEAP_MIN: ClassVar[int] = 0x0000_0000_8000_0000
    HEAP_MAX: ClassVar[int] = 0x0000_00FF_FFFF_FFFF

    # Highest star tier unlocked at each story progress level
    STARS_BY_PROGRESS: ClassVar[tuple[int, ...]] = (2, 3, 4, 5, 6, 6, 7)

    SCARLET_TITLE_ID: ClassVar[str] = "0100A3D008C5C000"
    VIOLET_TITLE_ID: ClassVar[str] = "01008F6008C5E000"


def pack_position(x: float, y: float, z: float) -> bytes:
    return struct.pack("<3f", x, y, z)


def unpack_position(data: bytes) -> tuple[float, float, float]:
    return struct.unpack("<3f", data[:12])
