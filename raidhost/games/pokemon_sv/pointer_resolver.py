"""
Pointer Resolver.

Resolves pointer chains one dereference at a time over the session's
transport. Resolution is all-or-nothing: a failed step aborts the chain and
no partial address escapes.
"""

import logging
import struct
from typing import Optional, Sequence, TYPE_CHECKING

from ...exceptions import PointerResolutionError, TransportError
from .memory_map import PointerChain, PokemonSVMemory as Mem

if TYPE_CHECKING:
    from ...console.socket_client import SysBotSocketClient

logger = logging.getLogger(__name__)

WORD_SIZE = 8


class PointerResolver:
    """
    Follows pointer chains through remote memory.

    Every intermediate pointer must be non-null and inside the heap bounds.
    """

    def __init__(
        self,
        client: "SysBotSocketClient",
        heap_min: int = Mem.HEAP_MIN,
        heap_max: int = Mem.HEAP_MAX,
    ):
        self.client = client
        self.heap_min = heap_min
        self.heap_max = heap_max
        self._main_base: Optional[int] = None

    @property
    def main_base(self) -> int:
        """Main executable base, fetched once per connection."""
        if self._main_base is None:
            self._main_base = self.client.get_main_base()
            logger.debug(f"Main base: 0x{self._main_base:X}")
        return self._main_base

    def invalidate(self) -> None:
        """Forget the cached main base (after a reconnect)."""
        self._main_base = None

    def resolve(self, base_address: int, offsets: Sequence[int]) -> int:
        """
        Resolve `offsets` starting from an absolute address.

        For each offset: read a 64-bit pointer at the current address, add
        the offset, continue from there. The final sum is returned.

        Raises:
            PointerResolutionError: carrying the 0-based step that failed.
        """
        current = base_address
        for step, offset in enumerate(offsets):
            try:
                raw = self.client.read(current, WORD_SIZE)
            except TransportError as e:
                raise PointerResolutionError(
                    f"Step {step}: read at 0x{current:X} failed: {e}", step, current
                ) from e

            pointer = struct.unpack("<Q", raw)[0]
            if pointer == 0:
                raise PointerResolutionError(
                    f"Step {step}: null pointer at 0x{current:X}", step, current
                )
            if not (self.heap_min <= pointer <= self.heap_max):
                raise PointerResolutionError(
                    f"Step {step}: pointer 0x{pointer:X} at 0x{current:X} outside heap",
                    step, current,
                )
            current = pointer + offset

        return current

    def resolve_chain(self, chain: PointerChain) -> int:
        """Resolve a main-relative symbolic chain to an absolute address."""
        address = self.resolve(self.main_base + chain.root, chain.offsets)
        logger.debug(f"{chain} -> 0x{address:X}")
        return address
