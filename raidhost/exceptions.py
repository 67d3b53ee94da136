"""
Custom exceptions for raidhost.

Provides specific exception types so the rotation state machine can tell
"the command failed" apart from "the command worked but the game disagreed",
instead of catching generic Exception everywhere.
"""

from typing import Optional


class RaidHostError(Exception):
    """Base exception for raidhost."""
    pass


class SessionCancelled(RaidHostError):
    """
    Raised when a session's cancel token is set.

    Not a failure: it unwinds the session without issuing further device I/O.
    """
    pass


class TransportError(RaidHostError):
    """
    Raised when a console command fails.

    Covers connection loss, an expired deadline, and malformed
    acknowledgements. The transport never retries; callers decide.
    """
    pass


class PointerResolutionError(RaidHostError):
    """
    Raised when a pointer chain cannot be resolved.

    This typically happens while the game is still loading, or after an
    overlay shifted the heap so a dereference lands on garbage.
    """

    def __init__(self, message: str, step: int, address: Optional[int] = None):
        super().__init__(message)
        self.step = step
        self.address = address


class InvalidSlotIndexError(RaidHostError, IndexError):
    """Raised when a slot index is not covered by any region."""

    def __init__(self, index: int):
        super().__init__(f"Slot index {index} is not covered by any region")
        self.index = index


class SeedMismatchError(RaidHostError):
    """Raised when the seed read back differs from the one injected."""

    def __init__(self, slot: int, expected: int, actual: int):
        super().__init__(
            f"Slot {slot}: injected seed 0x{expected:016X}, read back 0x{actual:016X}"
        )
        self.slot = slot
        self.expected = expected
        self.actual = actual


class NavigationFailure(RaidHostError):
    """Raised when the player did not end up close enough to the den."""

    def __init__(self, den_id: str, distance: float, threshold: float):
        super().__init__(
            f"Teleport to {den_id} ended {distance:.2f} units away (threshold {threshold:.2f})"
        )
        self.den_id = den_id
        self.distance = distance
        self.threshold = threshold


class LobbyError(RaidHostError):
    """Raised when the lobby did not open after the host sequence."""
    pass


class QueueFullError(RaidHostError):
    """Raised when a request would exceed the per-user or global queue cap."""
    pass


class InterferenceDetected(RaidHostError):
    """
    Raised when the environment probe sees memory that moved.

    Overlay applets on the console can shift the heap; every cached pointer
    is suspect afterwards, so the cycle is aborted and the connection rebooted.
    """
    pass


class DenNotFoundError(RaidHostError, KeyError):
    """Raised when a coordinate source has no entry for a den."""

    def __init__(self, region_id: str, den_id: str):
        super().__init__(f"No coordinates for den {den_id!r} in region {region_id!r}")
        self.region_id = region_id
        self.den_id = den_id

    def __str__(self) -> str:
        return self.args[0]


class CatalogFormatError(RaidHostError, ValueError):
    """Raised when a raid catalog line cannot be parsed."""

    def __init__(self, line_number: int, line: str, reason: str):
        super().__init__(f"Catalog line {line_number}: {reason}: {line!r}")
        self.line_number = line_number
        self.line = line


class ConfigError(RaidHostError, ValueError):
    """Raised when a configuration file or value is invalid."""
    pass
