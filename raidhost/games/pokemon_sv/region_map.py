"""
Raid Region Map.

Data-driven table translating a logical raid slot index into (region, offset
within the region's raid block). Each region has its own block pointer,
header size and stride; adding a region is a table edit.

The table is immutable and shared by every bot session without locking.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator

from ...exceptions import InvalidSlotIndexError
from .memory_map import PointerChain, PokemonSVMemory as Mem


@dataclass(frozen=True)
class Region:
    """
    One raid block.

    Attributes:
        region_id: Short name, also the prefix of den identifiers
        block_pointer: Chain resolving to the start of the block
        header_offset: Bytes between the block start and the first record
        stride: Bytes per slot record
        first_index: First slot index owned by this region (inclusive)
        last_index: Last slot index owned by this region (inclusive)
    """
    region_id: str
    block_pointer: PointerChain
    header_offset: int
    stride: int
    first_index: int
    last_index: int

    def __post_init__(self):
        if self.last_index < self.first_index:
            raise ValueError(
                f"Region {self.region_id}: range {self.first_index}-{self.last_index} is inverted"
            )
        if self.stride <= 0:
            raise ValueError(f"Region {self.region_id}: stride must be positive")

    def __contains__(self, index: int) -> bool:
        return self.first_index <= index <= self.last_index

    @property
    def slot_count(self) -> int:
        return self.last_index - self.first_index + 1


@dataclass(frozen=True)
class SlotLocation:
    """Where a slot lives: its region and its byte offset past the header."""
    region: Region
    offset: int

    @property
    def region_id(self) -> str:
        return self.region.region_id


DEFAULT_REGIONS = (
    Region("paldea", Mem.RAID_BLOCK_PALDEA, Mem.PALDEA_HEADER_SIZE, Mem.RAID_RECORD_SIZE, 0, 68),
    Region("kitakami", Mem.RAID_BLOCK_KITAKAMI, Mem.DLC_HEADER_SIZE, Mem.RAID_RECORD_SIZE, 69, 93),
    Region("blueberry", Mem.RAID_BLOCK_BLUEBERRY, Mem.DLC_HEADER_SIZE, Mem.RAID_RECORD_SIZE, 94, 117),
)


class RegionMap:
    """Lookup from slot index to region and block offset."""

    def __init__(self, regions: Iterable[Region] = DEFAULT_REGIONS):
        self._regions = tuple(sorted(regions, key=lambda r: r.first_index))
        if not self._regions:
            raise ValueError("RegionMap needs at least one region")

        seen: set[str] = set()
        for region in self._regions:
            if region.region_id in seen:
                raise ValueError(f"Duplicate region id: {region.region_id}")
            seen.add(region.region_id)
        for prev, cur in zip(self._regions, self._regions[1:]):
            if cur.first_index <= prev.last_index:
                raise ValueError(
                    f"Regions {prev.region_id} and {cur.region_id} overlap at index {cur.first_index}"
                )

    def __iter__(self) -> Iterator[Region]:
        return iter(self._regions)

    def __len__(self) -> int:
        return len(self._regions)

    def locate(self, index: int) -> SlotLocation:
        """
        Find the region owning `index` and the slot's offset in its block.

        Raises:
            InvalidSlotIndexError: if no region covers the index.
        """
        # Three entries; a linear scan is fine
        for region in self._regions:
            if index in region:
                return SlotLocation(region, (index - region.first_index) * region.stride)
        raise InvalidSlotIndexError(index)

    def region(self, region_id: str) -> Region:
        for region in self._regions:
            if region.region_id == region_id:
                return region
        raise KeyError(f"Unknown region: {region_id}")

    def enumerate_slots(self) -> list[int]:
        """Every slot index, in order."""
        return [i for r in self._regions for i in range(r.first_index, r.last_index + 1)]

    def den_id(self, index: int) -> str:
        """Den identifier for a slot, e.g. 'paldea-010'."""
        return f"{self.locate(index).region_id}-{index:03d}"
