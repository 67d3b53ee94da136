"""
Mock console for running the raid pipeline without hardware.

Simulates a console running Pokemon Scarlet/Violet by keeping a sparse byte
store and answering the same calls as SysBotSocketClient. Useful for:
- Running the bot loop offline (--dry-run)
- Testing pointer resolution, injection and the rotation state machine
- Injecting faults (failed reads/writes, clobbered seeds, teleport misses,
  overlay interference) at exact points

A tiny raid simulation reacts to button presses the way the host sequence
expects: A opens the lobby, PLUS starts the battle, B backs out.
"""

import logging
import struct
from typing import Optional

from ..exceptions import TransportError
from ..games.pokemon_sv.memory_map import PointerChain, PokemonSVMemory as Mem
from ..games.pokemon_sv.region_map import RegionMap
from .cancel import CancelToken, check_token
from .socket_client import SysBotSocketClient

logger = logging.getLogger(__name__)

DEFAULT_MAIN_BASE = 0x0000_0000_0800_4000
HEAP_START = 0x0000_0010_0000_0000
NODE_SIZE = 0x10000

SIGNATURE = bytes.fromhex("FD7BBFA9FD030091F30B00F9F30300AA")

# Battle status byte values, mirrored from raid_store.BattleStatus
_BATTLE_NONE, _BATTLE_ONGOING, _BATTLE_VICTORY = 0, 1, 2


class MockConsole:
    """
    In-memory console with the SysBotSocketClient API.

    Every command is appended to `commands` in wire syntax, and every write
    to `writes`, so tests can assert exactly what reached the "device".
    """

    VALID_BUTTONS = SysBotSocketClient.VALID_BUTTONS
    VALID_STICKS = SysBotSocketClient.VALID_STICKS

    def __init__(
        self,
        main_base: int = DEFAULT_MAIN_BASE,
        cancel: Optional[CancelToken] = None,
        memory_class: type = Mem,
    ):
        self.main_base = main_base
        self.cancel = cancel
        self.mem = memory_class
        self._memory: dict[int, int] = {}
        self._next_node = HEAP_START
        self._connected = False

        self.commands: list[str] = []
        self.writes: list[tuple[int, bytes]] = []
        self.connect_count = 0

        # Fault injection: each counter fails that many upcoming calls
        self.fail_connects = 0
        self.fail_reads = 0
        self.fail_writes = 0
        self.clobber_writes = 0
        self.teleport_error = (0.0, 0.0, 0.0)

        # Raid simulation knobs
        self.lobby_opens = True
        self.players_to_join = 3
        self.players_join_after_polls = 1
        self.battle_polls = 2
        self.battle_outcome = _BATTLE_VICTORY

        self.status_address: Optional[int] = None
        self.position_address: Optional[int] = None
        self._lobby_polls = 0
        self._battle_polls_left = 0

    # -------------------------------------------------------------------------
    # Layout
    # -------------------------------------------------------------------------

    @classmethod
    def with_raid_layout(
        cls,
        region_map: Optional[RegionMap] = None,
        story_progress: int = 6,
        **kwargs,
    ) -> "MockConsole":
        """Build a console whose pointer chains resolve like the real game."""
        console = cls(**kwargs)
        for region in region_map or RegionMap():
            console.install_chain(region.block_pointer)
        console.status_address = console.install_chain(console.mem.STATUS_BLOCK)
        console.position_address = console.install_chain(console.mem.PLAYER_POSITION)
        console.poke(console.main_base + console.mem.SIGNATURE_OFFSET, SIGNATURE)
        console.poke(
            console.status_address + console.mem.STATUS_STORY_OFFSET, bytes([story_progress])
        )
        return console

    def install_chain(self, chain: PointerChain) -> int:
        """
        Lay out heap nodes so `chain` resolves; returns the final address.

        Chains that share a prefix share nodes, as they do in the game.
        """
        address = self.main_base + chain.root
        for offset in chain.offsets:
            pointer = struct.unpack("<Q", self.peek(address, 8))[0]
            if pointer == 0:
                pointer = self._next_node
                self._next_node += NODE_SIZE
                self.poke(address, struct.pack("<Q", pointer))
            address = pointer + offset
        return address

    def peek(self, address: int, length: int) -> bytes:
        """Read memory directly, bypassing the command log and faults."""
        return bytes(self._memory.get(address + i, 0) for i in range(length))

    def poke(self, address: int, data: bytes) -> None:
        """Write memory directly, bypassing the command log and faults."""
        for i, b in enumerate(data):
            self._memory[address + i] = b

    def shift_memory(self) -> None:
        """Simulate an overlay applet remapping memory."""
        self.poke(self.main_base + self.mem.SIGNATURE_OFFSET, bytes(self.mem.SIGNATURE_SIZE))

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def connect(self) -> None:
        check_token(self.cancel)
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise TransportError("MockConsole: connection refused")
        self._connected = True
        self.connect_count += 1
        self.commands.append("configure echoCommands 1")
        logger.info("MockConsole: Connected")

    def is_connected(self) -> bool:
        return self._connected

    def close(self) -> None:
        self._connected = False

    def _begin(self, command: str) -> None:
        check_token(self.cancel)
        if not self._connected:
            raise TransportError("Not connected")
        self.commands.append(command)

    def _fail(self, message: str) -> None:
        # Mirrors the socket client: a failed command drops the connection
        self._connected = False
        raise TransportError(message)

    # -------------------------------------------------------------------------
    # Memory
    # -------------------------------------------------------------------------

    def read(self, address: int, length: int, timeout: Optional[float] = None) -> bytes:
        if length <= 0:
            raise ValueError(f"Read length must be positive, got {length}")
        self._begin(f"peekAbsolute 0x{address:X} {length}")
        if self.fail_reads > 0:
            self.fail_reads -= 1
            self._fail(f"MockConsole: read at 0x{address:X} timed out")
        if self.status_address is not None and _overlaps(address, length, self.status_address):
            self._tick_status()
        return self.peek(address, length)

    def write(self, address: int, data: bytes, timeout: Optional[float] = None) -> None:
        if not data:
            raise ValueError("Refusing to write an empty payload")
        self._begin(f"pokeAbsolute 0x{address:X} 0x{bytes(data).hex().upper()}")
        if self.fail_writes > 0:
            self.fail_writes -= 1
            self._fail(f"MockConsole: write at 0x{address:X} timed out")

        data = bytes(data)
        if self.clobber_writes > 0:
            # The game overwrites the record right after our write lands
            self.clobber_writes -= 1
            data = bytes(b ^ 0xFF for b in data)
        if self.position_address is not None and address == self.position_address:
            x, y, z = struct.unpack("<3f", data[:12])
            dx, dy, dz = self.teleport_error
            data = struct.pack("<3f", x + dx, y + dy, z + dz) + data[12:]

        self.writes.append((address, data))
        self.poke(address, data)

    def get_main_base(self, timeout: Optional[float] = None) -> int:
        self._begin("getMainNsoBase")
        return self.main_base

    def get_title_id(self, timeout: Optional[float] = None) -> str:
        self._begin("getTitleID")
        return self.mem.SCARLET_TITLE_ID

    def get_version(self, timeout: Optional[float] = None) -> str:
        self._begin("getVersion")
        return "2.4"

    # -------------------------------------------------------------------------
    # Input
    # -------------------------------------------------------------------------

    def click(self, button: str, timeout: Optional[float] = None) -> None:
        self.press(button, 0, timeout)

    def press(self, button: str, hold_ms: int = 0, timeout: Optional[float] = None) -> None:
        if button not in self.VALID_BUTTONS:
            raise ValueError(f"Invalid button: {button}")
        self._begin(f"click {button}" if hold_ms <= 0 else f"press {button} {hold_ms}ms")
        logger.debug(f"MockConsole: {button}")
        self._on_button(button)

    def navigate(self, stick: str, vector: tuple[int, int], ms: int,
                 timeout: Optional[float] = None) -> None:
        stick = stick.upper()
        if stick not in self.VALID_STICKS:
            raise ValueError(f"Invalid stick: {stick}")
        self._begin(f"setStick {stick} {vector[0]} {vector[1]} {ms}ms")

    # -------------------------------------------------------------------------
    # Raid simulation
    # -------------------------------------------------------------------------

    def _status_byte(self, offset: int) -> int:
        return self.peek(self.status_address + offset, 1)[0]

    def _set_status_byte(self, offset: int, value: int) -> None:
        self.poke(self.status_address + offset, bytes([value & 0xFF]))

    def _on_button(self, button: str) -> None:
        if self.status_address is None:
            return
        lobby = self._status_byte(self.mem.STATUS_LOBBY_STATE_OFFSET)
        battle = self._status_byte(self.mem.STATUS_BATTLE_OFFSET)

        if button == "A" and not lobby and battle == _BATTLE_NONE and self.lobby_opens:
            self._set_status_byte(self.mem.STATUS_LOBBY_STATE_OFFSET, 1)
            self._set_status_byte(self.mem.STATUS_LOBBY_PLAYERS_OFFSET, 0)
            self._lobby_polls = 0
        elif button == "PLUS" and lobby:
            self._set_status_byte(self.mem.STATUS_LOBBY_STATE_OFFSET, 0)
            self._set_status_byte(self.mem.STATUS_BATTLE_OFFSET, _BATTLE_ONGOING)
            self._battle_polls_left = self.battle_polls
        elif button == "B":
            if lobby:
                self._set_status_byte(self.mem.STATUS_LOBBY_STATE_OFFSET, 0)
                self._set_status_byte(self.mem.STATUS_LOBBY_PLAYERS_OFFSET, 0)
            elif battle not in (_BATTLE_NONE, _BATTLE_ONGOING):
                self._set_status_byte(self.mem.STATUS_BATTLE_OFFSET, _BATTLE_NONE)

    def _tick_status(self) -> None:
        if self._status_byte(self.mem.STATUS_LOBBY_STATE_OFFSET):
            self._lobby_polls += 1
            if self._lobby_polls > self.players_join_after_polls:
                self._set_status_byte(self.mem.STATUS_LOBBY_PLAYERS_OFFSET, self.players_to_join)
        if self._status_byte(self.mem.STATUS_BATTLE_OFFSET) == _BATTLE_ONGOING:
            if self._battle_polls_left <= 0:
                self._set_status_byte(self.mem.STATUS_BATTLE_OFFSET, self.battle_outcome)
            self._battle_polls_left -= 1

    def __enter__(self) -> "MockConsole":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.close()


def _overlaps(address: int, length: int, target: int) -> bool:
    return address <= target < address + length
