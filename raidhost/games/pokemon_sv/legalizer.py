"""
Raid content packing.

The rotation writes whatever bytes the legalizer hands back straight after
the seed, checking nothing but the length. RaidContentPacker fills the
record's metadata field; a legalizer producing a full, game-legal encounter
plugs in through the same interface.
"""

import logging
import struct
from typing import Mapping, Optional, Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from ...raids.request_queue import RaidRequest

logger = logging.getLogger(__name__)


class EntityLegalizer(Protocol):
    def legalize(self, request: "RaidRequest") -> bytes: ...


class RaidContentPacker:
    """
    Packs (content tier, species id, story progress, flags) as "<IHBB".

    Args:
        species_ids: Species name -> national dex number. Names are matched
            case-insensitively; numeric names are used as-is. Unknown
            species pack as 0, which leaves the species to the seed.
        flags: Value of the record's flag byte
    """

    FORMAT = "<IHBB"

    def __init__(self, species_ids: Optional[Mapping[str, int]] = None, flags: int = 0):
        self.species_ids = {k.lower(): v for k, v in (species_ids or {}).items()}
        self.flags = flags

    def species_id(self, species: str) -> int:
        name = species.strip().lower()
        if name in self.species_ids:
            return self.species_ids[name]
        if name.isdigit():
            return int(name)
        if name:
            logger.debug(f"No species id for {species!r}, packing 0")
        return 0

    def legalize(self, request: "RaidRequest") -> bytes:
        """
        Raises:
            ValueError: if a field does not fit the record.
        """
        try:
            return struct.pack(
                self.FORMAT,
                request.stars,
                self.species_id(request.species) & 0xFFFF,
                request.story_progress & 0xFF,
                self.flags & 0xFF,
            )
        except struct.error as e:
            raise ValueError(f"Cannot pack request {request}: {e}") from e
