"""
Input Controller - Wrapper for console button inputs.

Provides a consistent interface for sending button inputs to the console,
independent of whether the transport is the real socket client or the
in-memory mock.
"""

import logging
import time
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .console.cancel import CancelToken
    from .console.socket_client import SysBotSocketClient

logger = logging.getLogger(__name__)


class InputController:
    """
    Controller for sending button inputs to the console.

    Wraps the transport's button methods with additional features:
    - Input logging
    - Cooldown between inputs so the game does not eat presses
    - Timed button sequences
    """

    def __init__(
        self,
        client: "SysBotSocketClient",
        input_cooldown: float = 0.05,
        cancel: Optional["CancelToken"] = None,
    ):
        """
        Initialize the input controller.

        Args:
            client: Session transport
            input_cooldown: Minimum time between inputs in seconds
            cancel: Session cancel token; cooldown waits wake on cancel
        """
        self.client = client
        self.input_cooldown = input_cooldown
        self.cancel = cancel
        self._last_input_time = 0.0

    def _wait(self, seconds: float) -> None:
        if self.cancel is not None:
            self.cancel.sleep(seconds)
        elif seconds > 0:
            time.sleep(seconds)

    def _cooldown(self) -> None:
        elapsed = time.monotonic() - self._last_input_time
        if elapsed < self.input_cooldown:
            self._wait(self.input_cooldown - elapsed)

    def tap(self, button: str) -> bool:
        """
        Tap a button (press and release).

        Returns:
            False if the button name is invalid, True once the input was sent
        """
        if button not in self.client.VALID_BUTTONS:
            logger.warning(f"Invalid button: {button}")
            return False

        self._cooldown()
        self.client.click(button)
        self._last_input_time = time.monotonic()

        logger.debug(f"Input: {button}")
        return True

    def press_sequence(self, buttons: list[str], delay: float = 0.1) -> bool:
        """
        Press a sequence of buttons with delay between each.

        Returns:
            True if all inputs were sent successfully
        """
        success = True
        for button in buttons:
            if not self.tap(button):
                success = False
            self._wait(delay)
        return success
