"""Fault taxonomy for the CHIP-8 core.

Every fault is fatal to the current run: the interpreter restores PC,
marks the machine halted and re-raises. Each class also derives from the
closest builtin so callers catching ``IndexError``/``ValueError`` keep working.
"""


class Chip8Error(RuntimeError):
    """Base class for all faults raised by the CHIP-8 core."""


class MemoryAccessError(Chip8Error, IndexError):
    """Access outside the 4 KiB address space (or I register overflow)."""

    def __init__(self, address: int, length: int = 1, reason: str = ""):
        self.address = address
        self.length = length
        message = f"Memory access out of range: 0x{address:04X}+{length}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class StackOverflowError(Chip8Error):
    """CALL with every stack slot already in use."""


class StackUnderflowError(Chip8Error):
    """RET with an empty call stack."""


class RomTooLargeError(Chip8Error, ValueError):
    """ROM does not fit between the program start and the end of memory."""


class InvalidKeyError(Chip8Error, ValueError):
    """Keypad index outside 0x0-0xF."""

    def __init__(self, key: int):
        self.key = key
        super().__init__(f"Invalid key: {key} (expected 0-15)")
