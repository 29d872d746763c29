"""Framebuffer: 64x32 monochrome pixel grid with XOR sprite plotting.

Pixels are stored row-major in a ``numpy`` ``uint8`` array of shape
(HEIGHT, WIDTH), so ``pixels[y, x]`` is the pixel at column x of row y.
Values are always 0 or 1.

Sprites are up to 15 bytes tall and 8 pixels wide. Each byte is one row,
most significant bit leftmost. Rows and columns wrap around the screen
independently.
"""

from typing import Sequence

import numpy as np

from .errors import MemoryAccessError

WIDTH = 64
HEIGHT = 32
SPRITE_WIDTH = 8


class Framebuffer:
    """The 64x32 display.

    Attributes:
        width: Number of columns (64)
        height: Number of rows (32)
    """

    width = WIDTH
    height = HEIGHT

    def __init__(self):
        self._pixels = np.zeros((HEIGHT, WIDTH), dtype=np.uint8)

    def clear(self) -> None:
        """Turn every pixel off (CLS)."""
        self._pixels.fill(0)

    def draw_sprite(self, memory: Sequence[int], byte_count: int, address: int, x: int, y: int) -> bool:
        """XOR-plot a sprite read from memory.

        Args:
            memory: Byte-addressable memory to read sprite rows from
            byte_count: Number of rows (bytes) in the sprite
            address: Address of the first sprite row
            x: Column of the sprite's left edge (wrapped mod 64)
            y: Row of the sprite's top edge (wrapped mod 32)

        Returns:
            True if any pixel that was on was turned off by this draw

        Raises:
            MemoryAccessError: If the sprite rows extend past the end of memory.
                Raised before any pixel changes.
        """
        if address < 0 or address + byte_count > len(memory):
            raise MemoryAccessError(address, byte_count, "sprite read")

        collision = False
        for r in range(byte_count):
            sprite_byte = memory[address + r]
            row = (y + r) % HEIGHT
            for bit in range(SPRITE_WIDTH):
                if not (sprite_byte >> (SPRITE_WIDTH - 1 - bit)) & 1:
                    continue
                col = (x + bit) % WIDTH
                # Only a lit pixel XORed with a set sprite bit is erased
                if self._pixels[row, col]:
                    collision = True
                self._pixels[row, col] ^= 1
        return collision

    def get_pixel(self, x: int, y: int) -> int:
        return int(self._pixels[y % HEIGHT, x % WIDTH])

    def snapshot(self) -> np.ndarray:
        """Return a read-only copy of the pixel grid, shape (32, 64)."""
        pixels = self._pixels.copy()
        pixels.setflags(write=False)
        return pixels

    def lit_count(self) -> int:
        return int(self._pixels.sum())

    def to_text(self, on: str = "#", off: str = ".") -> str:
        """Render the grid as text, one line per row."""
        return "\n".join(
            "".join(on if pixel else off for pixel in row) for row in self._pixels
        )

    def __str__(self) -> str:
        return self.to_text()
