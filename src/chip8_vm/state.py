"""MachineState: the owned aggregate of CHIP-8 machine state.

State Components:
    - Memory: 4096 bytes, font glyphs at 0x000-0x04F, programs from 0x200
    - Registers: V0-VF (16 8-bit values, VF doubles as the flag register)
    - I: 16-bit address register (not masked to 12 bits)
    - PC: Program counter, 0x200 after reset
    - SP / stack: 16-slot LIFO of return addresses
    - DT / ST: Delay and sound timers, decremented at 60 Hz by the host
    - Framebuffer and keypad peripherals
    - Bookkeeping: pending key wait, halted flag, cycle count

Unlike a pure register file, the state is mutated in place: the interpreter
holds the only reference and every instruction handler updates it directly.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from .display import Framebuffer
from .errors import MemoryAccessError, RomTooLargeError, StackOverflowError, StackUnderflowError
from .keypad import Keypad

logger = logging.getLogger(__name__)

MEMORY_SIZE = 4096
PROGRAM_START = 0x200
MAX_ROM_SIZE = MEMORY_SIZE - PROGRAM_START
REGISTER_COUNT = 16
STACK_DEPTH = 16
FLAG_REGISTER = 0xF
FONT_START = 0x000
GLYPH_SIZE = 5

# Hexadecimal digit glyphs 0-F, 4x5 pixels each, left-aligned in the byte
FONT_SET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])


def _blank_memory() -> bytearray:
    memory = bytearray(MEMORY_SIZE)
    memory[FONT_START:FONT_START + len(FONT_SET)] = FONT_SET
    return memory


@dataclass
class MachineState:
    """Mutable CHIP-8 machine state.

    A default-constructed instance is already in the canonical reset state.

    Attributes:
        memory: 4096-byte address space
        registers: V0-VF as a list of 16 ints in 0-255
        I: Address register
        pc: Program counter
        sp: Number of return addresses on the stack
        stack: 16 return-address slots
        DT: Delay timer
        ST: Sound timer
        display: 64x32 framebuffer
        keypad: 16-key keypad
        rng: Random source for RND
        awaiting_key: Register index a pending key wait stores into, or None
        halted: Whether a fault aborted the run
        cycle_count: Number of completed cycles
    """
    memory: bytearray = field(default_factory=_blank_memory)
    registers: List[int] = field(default_factory=lambda: [0] * REGISTER_COUNT)
    I: int = 0
    pc: int = PROGRAM_START
    sp: int = 0
    stack: List[int] = field(default_factory=lambda: [0] * STACK_DEPTH)
    DT: int = 0
    ST: int = 0
    display: Framebuffer = field(default_factory=Framebuffer, repr=False)
    keypad: Keypad = field(default_factory=Keypad, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)
    awaiting_key: Optional[int] = None
    halted: bool = False
    cycle_count: int = 0

    def reset(self) -> None:
        """Return to the canonical initial state.

        Zeroes memory and reloads the font, clears registers, timers, stack
        and screen, releases every key and sets PC to 0x200. The random
        source is kept.
        """
        self.memory = _blank_memory()
        self.registers = [0] * REGISTER_COUNT
        self.I = 0
        self.pc = PROGRAM_START
        self.sp = 0
        self.stack = [0] * STACK_DEPTH
        self.DT = 0
        self.ST = 0
        self.display.clear()
        self.keypad.reset()
        self.awaiting_key = None
        self.halted = False
        self.cycle_count = 0
        logger.debug("Machine reset")

    def load_rom(self, data: Union[bytes, bytearray, List[int]]) -> None:
        """Copy a program into memory at 0x200.

        Args:
            data: ROM bytes

        Raises:
            RomTooLargeError: If data is longer than 3584 bytes. Memory is
                untouched in that case.
        """
        rom = bytes(data)
        if len(rom) > MAX_ROM_SIZE:
            raise RomTooLargeError(
                f"ROM is {len(rom)} bytes, at most {MAX_ROM_SIZE} fit at 0x{PROGRAM_START:03X}"
            )
        self.memory[PROGRAM_START:PROGRAM_START + len(rom)] = rom
        logger.debug("Loaded %d byte ROM at 0x%03X", len(rom), PROGRAM_START)

    # =========================================================================
    # Memory and stack
    # =========================================================================

    def check_range(self, address: int, length: int, reason: str = "") -> None:
        """Fail unless [address, address + length) lies inside memory.

        Raises:
            MemoryAccessError: If any byte of the range is outside memory
        """
        if address < 0 or address + length > MEMORY_SIZE:
            raise MemoryAccessError(address, length, reason)

    def read_word(self, address: int) -> int:
        """Read a big-endian 16-bit word.

        Raises:
            MemoryAccessError: If address + 1 is past the end of memory
        """
        self.check_range(address, 2, "instruction fetch")
        return (self.memory[address] << 8) | self.memory[address + 1]

    def push(self, address: int) -> None:
        """Push a return address.

        Raises:
            StackOverflowError: If all 16 slots are in use
        """
        if self.sp >= STACK_DEPTH:
            raise StackOverflowError(
                f"Call stack overflow: {STACK_DEPTH} nested calls at PC=0x{self.pc:03X}"
            )
        self.stack[self.sp] = address
        self.sp += 1

    def pop(self) -> int:
        """Pop the most recent return address.

        Raises:
            StackUnderflowError: If the stack is empty
        """
        if self.sp == 0:
            raise StackUnderflowError(f"Return with empty call stack at PC=0x{self.pc:03X}")
        self.sp -= 1
        return self.stack[self.sp]

    # =========================================================================
    # Registers and timers
    # =========================================================================

    def get_register(self, reg: Union[int, str]) -> int:
        """Get a register by index or by name.

        Args:
            reg: Register index 0-15, or a name like "VA" (case insensitive)

        Returns:
            Register value

        Raises:
            KeyError: If register doesn't exist
        """
        return self.registers[self._register_index(reg)]

    def set_register(self, reg: Union[int, str], value: int) -> None:
        """Set a register, keeping only the low 8 bits of value."""
        self.registers[self._register_index(reg)] = value & 0xFF

    @staticmethod
    def _register_index(reg: Union[int, str]) -> int:
        if isinstance(reg, str):
            name = reg.upper()
            if len(name) != 2 or name[0] != "V" or name[1] not in "0123456789ABCDEF":
                raise KeyError(f"Invalid register: {reg}")
            return int(name[1], 16)
        if not 0 <= reg < REGISTER_COUNT:
            raise KeyError(f"Invalid register: {reg}")
        return reg

    def decrement_timers(self) -> None:
        """Count each active timer down by one, stopping at zero."""
        if self.DT > 0:
            self.DT -= 1
        if self.ST > 0:
            self.ST -= 1

    @property
    def sound_active(self) -> bool:
        """True while the sound timer is non-zero."""
        return self.ST != 0

    # =========================================================================
    # Inspection
    # =========================================================================

    def dump_registers(self) -> Dict[str, int]:
        """Get a copy of V0-VF keyed by name."""
        return {f"V{i:X}": value for i, value in enumerate(self.registers)}

    def snapshot(self) -> dict:
        """Create a copy of the CPU-visible state for tracing.

        Memory and the framebuffer are excluded for size.
        """
        return {
            "registers": self.dump_registers(),
            "I": self.I,
            "pc": self.pc,
            "sp": self.sp,
            "stack": self.stack[:self.sp],
            "DT": self.DT,
            "ST": self.ST,
            "awaiting_key": self.awaiting_key,
            "halted": self.halted,
            "cycle_count": self.cycle_count,
        }

    def validate(self) -> bool:
        """Validate state integrity.

        Checks:
            - Memory is exactly 4096 bytes
            - All registers and timers are 8-bit values
            - I fits in 16 bits
            - PC leaves room for a 2-byte fetch
            - SP is within the stack

        Returns:
            True if state is valid, False otherwise
        """
        if len(self.memory) != MEMORY_SIZE:
            return False
        if len(self.registers) != REGISTER_COUNT:
            return False
        for value in self.registers:
            if not isinstance(value, int) or not 0 <= value <= 0xFF:
                return False
        for timer in (self.DT, self.ST):
            if not 0 <= timer <= 0xFF:
                return False
        if not 0 <= self.I <= 0xFFFF:
            return False
        if not 0 <= self.pc <= MEMORY_SIZE - 2:
            return False
        if not 0 <= self.sp <= STACK_DEPTH:
            return False
        if self.awaiting_key is not None and not 0 <= self.awaiting_key < REGISTER_COUNT:
            return False
        return True

    def __str__(self) -> str:
        """Human-readable state representation."""
        regs = " ".join(f"V{i:X}={v:02X}" for i, v in enumerate(self.registers))
        status = " HALTED" if self.halted else ""
        return (
            f"[Cycle {self.cycle_count}] PC={self.pc:03X} I={self.I:03X} SP={self.sp} "
            f"DT={self.DT} ST={self.ST} {regs}{status}"
        )


def create_initial_state(rom: Optional[bytes] = None, rng: Optional[random.Random] = None) -> MachineState:
    """Create a reset machine, optionally with a ROM loaded.

    Args:
        rom: Program bytes to load at 0x200
        rng: Random source for RND (a fresh unseeded one if None)

    Returns:
        Fresh MachineState
    """
    state = MachineState(rng=rng if rng is not None else random.Random())
    if rom is not None:
        state.load_rom(rom)
    return state
