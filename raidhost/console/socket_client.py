"""
SysBot Socket Client - TCP command client for a console running sys-botbase.

The console runs a small command server; Python connects to it as a TCP
client and speaks a line-oriented ASCII protocol.

Architecture:
    Console (sys-botbase) = TCP Server (listens on port 6000)
    Python (this)         = TCP Client (one connection per bot session)

Protocol:
    Commands are sent as "{command}\\r\\n", replies end with "\\n".
    Echo mode is switched on at connect, so every command is acknowledged by
    a line repeating it. Query commands send one more line with the data:

        -> peekAbsolute 0x8A1C0010 8
        <- peekAbsolute 0x8A1C0010 8
        <- 89674523010FCDAB

A reply that does not echo the command, or data that is not hex of the
requested length, is a malformed ack. Any failure mid-transaction leaves the
stream out of sync, so the socket is closed and the caller must reconnect.

Pointer chains are resolved by the caller with one peek per step; the
connection must never be shared between sessions or two chains interleave.
"""

import logging
import socket
import threading
from typing import Optional

from ..exceptions import SessionCancelled, TransportError
from .cancel import CancelToken, Deadline, check_token

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6000

# recv() wakes at least this often to notice cancellation
_POLL_SLICE = 0.1


class SysBotSocketClient:
    """
    TCP client for the console's sys-botbase command server.

    Implements the memory transport contract: read/write by absolute address,
    button presses and stick movement. Never retries; every failure is raised
    as TransportError for the caller's retry policy.
    """

    VALID_BUTTONS = {
        "A", "B", "X", "Y", "L", "R", "ZL", "ZR", "PLUS", "MINUS", "HOME",
        "CAPTURE", "DUP", "DDOWN", "DLEFT", "DRIGHT", "LSTICK", "RSTICK",
    }
    VALID_STICKS = {"LEFT", "RIGHT"}

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        timeout: float = 5.0,
        cancel: Optional[CancelToken] = None,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.cancel = cancel

        self._socket: Optional[socket.socket] = None
        self._buffer = b""
        self._connected = False
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    def connect(self) -> None:
        """
        Open the connection and switch the console to echo mode.

        Raises:
            TransportError: if the console is unreachable or does not ack.
        """
        check_token(self.cancel)
        self.close()
        try:
            self._socket = socket.create_connection((self.host, self.port), timeout=self.timeout)
            self._socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        except OSError as e:
            self._socket = None
            raise TransportError(f"Cannot connect to {self.host}:{self.port}: {e}") from e

        self._buffer = b""
        self._connected = True
        logger.info(f"Connected to console at {self.host}:{self.port}")
        self._transact("configure echoCommands 1")

    def is_connected(self) -> bool:
        return self._connected and self._socket is not None

    def close(self) -> None:
        """Close the socket. Sends nothing to the console."""
        self._connected = False
        if self._socket:
            try:
                self._socket.close()
            except OSError as e:
                logger.debug(f"Error closing socket: {e}")
            self._socket = None
        self._buffer = b""

    # -------------------------------------------------------------------------
    # Protocol: line framing
    # -------------------------------------------------------------------------

    def _send_line(self, line: str, deadline: Deadline) -> None:
        if not self._socket:
            raise TransportError("Not connected")
        deadline.check(line)
        try:
            self._socket.settimeout(max(deadline.remaining, 0.001))
            self._socket.sendall(f"{line}\r\n".encode("ascii"))
        except socket.timeout as e:
            raise TransportError(f"Send timed out: {line}") from e
        except OSError as e:
            raise TransportError(f"Send failed: {e}") from e

    def _recv_line(self, deadline: Deadline) -> str:
        if not self._socket:
            raise TransportError("Not connected")
        while b"\n" not in self._buffer:
            check_token(self.cancel)
            deadline.check("reply")
            try:
                self._socket.settimeout(max(min(deadline.remaining, _POLL_SLICE), 0.001))
                chunk = self._socket.recv(4096)
            except socket.timeout:
                continue
            except OSError as e:
                raise TransportError(f"Recv failed: {e}") from e
            if not chunk:
                raise TransportError("Connection closed by console")
            self._buffer += chunk

        line, _, self._buffer = self._buffer.partition(b"\n")
        return line.decode("ascii", errors="replace").strip()

    def _transact(self, command: str, expect_reply: bool = False,
                  timeout: Optional[float] = None) -> Optional[str]:
        """
        Send one command and wait for its echo (and data line if expected).

        Raises:
            TransportError: on I/O failure, expired deadline or malformed ack.
            SessionCancelled: if the session is cancelled.
        """
        check_token(self.cancel)
        if not self.is_connected():
            raise TransportError("Not connected")

        deadline = Deadline(self.timeout if timeout is None else timeout)
        with self._lock:
            try:
                self._send_line(command, deadline)
                echo = self._recv_line(deadline)
                if echo != command:
                    raise TransportError(f"Malformed ack for {command!r}: {echo!r}")
                reply = self._recv_line(deadline) if expect_reply else None
            except (TransportError, SessionCancelled):
                # The stream is out of sync now; only a reconnect recovers it
                self.close()
                raise
        logger.debug(f"-> {command} <- {reply if reply is not None else 'ack'}")
        return reply

    def _malformed(self, message: str) -> TransportError:
        """Close the connection; the stream is no longer in step with the console."""
        self.close()
        return TransportError(message)

    def _parse_hex(self, command: str, reply: Optional[str]) -> bytes:
        try:
            return bytes.fromhex(reply or "")
        except ValueError as e:
            raise self._malformed(f"Malformed reply for {command!r}: {(reply or '')[:40]!r}") from e

    # -------------------------------------------------------------------------
    # Memory
    # -------------------------------------------------------------------------

    def read(self, address: int, length: int, timeout: Optional[float] = None) -> bytes:
        """Read `length` bytes at an absolute address."""
        if length <= 0:
            raise ValueError(f"Read length must be positive, got {length}")
        command = f"peekAbsolute 0x{address:X} {length}"
        data = self._parse_hex(command, self._transact(command, expect_reply=True, timeout=timeout))
        if len(data) != length:
            raise self._malformed(f"Short read at 0x{address:X}: wanted {length}, got {len(data)}")
        return data

    def write(self, address: int, data: bytes, timeout: Optional[float] = None) -> None:
        """Write bytes at an absolute address in a single command."""
        if not data:
            raise ValueError("Refusing to write an empty payload")
        self._transact(f"pokeAbsolute 0x{address:X} 0x{bytes(data).hex().upper()}", timeout=timeout)

    def get_main_base(self, timeout: Optional[float] = None) -> int:
        """Load address of the game's main executable."""
        command = "getMainNsoBase"
        reply = self._transact(command, expect_reply=True, timeout=timeout)
        try:
            return int(reply or "", 16)
        except ValueError as e:
            raise self._malformed(f"Malformed reply for {command!r}: {reply!r}") from e

    def get_title_id(self, timeout: Optional[float] = None) -> str:
        return (self._transact("getTitleID", expect_reply=True, timeout=timeout) or "").upper()

    def get_version(self, timeout: Optional[float] = None) -> str:
        return self._transact("getVersion", expect_reply=True, timeout=timeout) or ""

    # -------------------------------------------------------------------------
    # Input
    # -------------------------------------------------------------------------

    def _check_button(self, button: str) -> None:
        if button not in self.VALID_BUTTONS:
            raise ValueError(f"Invalid button: {button}")

    def click(self, button: str, timeout: Optional[float] = None) -> None:
        self._check_button(button)
        self._transact(f"click {button}", timeout=timeout)

    def press(self, button: str, hold_ms: int = 0, timeout: Optional[float] = None) -> None:
        """Tap a button, or hold it for `hold_ms` milliseconds."""
        self._check_button(button)
        if hold_ms <= 0:
            self._transact(f"click {button}", timeout=timeout)
            return
        self._transact(f"press {button}", timeout=timeout)
        self._sleep(hold_ms / 1000)
        self._transact(f"release {button}", timeout=timeout)

    def navigate(self, stick: str, vector: tuple[int, int], ms: int,
                 timeout: Optional[float] = None) -> None:
        """Push a stick to `vector` for `ms` milliseconds, then recenter it."""
        stick = stick.upper()
        if stick not in self.VALID_STICKS:
            raise ValueError(f"Invalid stick: {stick}")
        x, y = (_clamp_axis(v) for v in vector)
        self._transact(f"setStick {stick} {_axis_hex(x)} {_axis_hex(y)}", timeout=timeout)
        self._sleep(ms / 1000)
        self._transact(f"setStick {stick} 0x0 0x0", timeout=timeout)

    def _sleep(self, seconds: float) -> None:
        if self.cancel is not None:
            self.cancel.sleep(seconds)
        elif seconds > 0:
            threading.Event().wait(seconds)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    def __enter__(self) -> "SysBotSocketClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _clamp_axis(value: int) -> int:
    return max(-0x8000, min(0x7FFF, int(value)))


def _axis_hex(value: int) -> str:
    # sys-botbase takes axis values as 16-bit two's complement hex
    return f"0x{value & 0xFFFF:X}"
