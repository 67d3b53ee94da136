"""
Navigation to raid dens.

The rotation state machine only needs a driver that can move the player
somewhere and report where it actually ended up; the distance check against
the den coordinates is done by the caller.

ConsoleNavigator teleports by writing the player position through its
pointer chain, giving the game a moment to settle, then reading it back.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional, Protocol, TYPE_CHECKING

from .memory_map import PokemonSVMemory as Mem, pack_position, unpack_position
from .pointer_resolver import PointerResolver

if TYPE_CHECKING:
    from ...console.cancel import CancelToken
    from ...console.socket_client import SysBotSocketClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Coordinates:
    """World position in game units."""
    x: float
    y: float
    z: float

    def distance_to(self, other: "Coordinates") -> float:
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2
        )

    def __str__(self) -> str:
        return f"({self.x:.1f}, {self.y:.1f}, {self.z:.1f})"


class NavigationDriver(Protocol):
    def move_to(self, coordinates: Coordinates, timeout: float) -> Coordinates: ...

    def press_button(self, button: str, hold_ms: int = 0) -> None: ...


class ConsoleNavigator:
    """
    Teleporting navigation driver.

    Args:
        client: Session transport
        resolver: Resolver sharing the session's cached main base
        settle_time: Seconds to wait between the write and the read-back
        cancel: Session cancel token (settle waits wake on cancel)
    """

    # Nudge the stick so the game commits the new position to the player
    # object instead of snapping back on the next frame
    SETTLE_NUDGE = ("LEFT", (0, 0x4000), 50)

    def __init__(
        self,
        client: "SysBotSocketClient",
        resolver: Optional[PointerResolver] = None,
        settle_time: float = 0.5,
        cancel: Optional["CancelToken"] = None,
        memory_class: type = Mem,
    ):
        self.client = client
        self.resolver = resolver or PointerResolver(client)
        self.settle_time = settle_time
        self.cancel = cancel
        self.mem = memory_class

    def current_position(self) -> Coordinates:
        address = self.resolver.resolve_chain(self.mem.PLAYER_POSITION)
        return Coordinates(*unpack_position(self.client.read(address, self.mem.PLAYER_POSITION_SIZE)))

    def move_to(self, coordinates: Coordinates, timeout: float) -> Coordinates:
        """Teleport to `coordinates`; returns the position actually reached."""
        address = self.resolver.resolve_chain(self.mem.PLAYER_POSITION)
        self.client.write(
            address, pack_position(coordinates.x, coordinates.y, coordinates.z), timeout=timeout
        )

        stick, vector, ms = self.SETTLE_NUDGE
        self.client.navigate(stick, vector, ms, timeout=timeout)
        if self.cancel is not None:
            self.cancel.sleep(self.settle_time)
        else:
            time.sleep(self.settle_time)

        actual = Coordinates(*unpack_position(
            self.client.read(address, self.mem.PLAYER_POSITION_SIZE, timeout=timeout)
        ))
        logger.debug(f"Teleport target {coordinates}, landed at {actual}")
        return actual

    def press_button(self, button: str, hold_ms: int = 0) -> None:
        self.client.press(button, hold_ms)
