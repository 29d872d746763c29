"""Keypad: sixteen independent switches addressed 0x0-0xF.

State is driven entirely by the host's input layer. There is no debouncing
and no event queue; the last write for a key wins.
"""

import logging
from typing import List, Tuple

from .errors import InvalidKeyError

logger = logging.getLogger(__name__)

KEY_COUNT = 16


class Keypad:
    """Hexadecimal keypad state."""

    def __init__(self):
        self._keys: List[bool] = [False] * KEY_COUNT

    @staticmethod
    def _check(key: int) -> int:
        if not 0 <= key < KEY_COUNT:
            raise InvalidKeyError(key)
        return key

    def set_down(self, key: int) -> None:
        self._keys[self._check(key)] = True
        logger.debug("Key 0x%X down", key)

    def set_up(self, key: int) -> None:
        self._keys[self._check(key)] = False
        logger.debug("Key 0x%X up", key)

    def is_down(self, key: int) -> bool:
        """Check whether a key is held.

        Raises:
            InvalidKeyError: If key is outside 0-15
        """
        return self._keys[self._check(key)]

    def reset(self) -> None:
        """Release every key."""
        self._keys = [False] * KEY_COUNT

    def snapshot(self) -> Tuple[bool, ...]:
        """Return the state of all 16 keys, index 0 first."""
        return tuple(self._keys)

    def pressed(self) -> List[int]:
        """Return indices of keys currently down, ascending."""
        return [key for key, down in enumerate(self._keys) if down]

    def __str__(self) -> str:
        return "".join(f"{key:X}" if down else "." for key, down in enumerate(self._keys))
