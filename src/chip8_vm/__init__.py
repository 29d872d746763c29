"""chip8_vm: CHIP-8 virtual machine core.

This package interprets programs for the CHIP-8 base instruction set. A host
drives it with discrete calls: execute one cycle, tick the 60 Hz timers,
press or release a key, and read the 64x32 framebuffer.

Architecture:
    MEMORY -> FETCH -> DECODE -> KEY -> REGISTRY -> EXECUTE -> STATE
               |          |       |        |           |
           [PC-based] [nibbles] [OP_*] [Handlers]  [In-place]

Modules:
    state: MachineState aggregate (memory, registers, stack, timers)
    display: 64x32 Framebuffer with XOR sprite plotting
    keypad: 16-key Keypad state
    decode: Instruction word decoder, disassembler and hex listing parser
    registry: Verified instruction handlers keyed by operation
    cpu: Chip8CPU interpreter
    errors: Fault taxonomy
"""

__version__ = "0.1.0"

from .state import MachineState, create_initial_state
from .display import Framebuffer
from .keypad import Keypad
from .decode import DecodeResult, Instruction, decode, disassemble, parse_hex_program
from .registry import OpcodeRegistry
from .cpu import Chip8CPU, ExecutionTraceEntry
from .errors import (
    Chip8Error,
    InvalidKeyError,
    MemoryAccessError,
    RomTooLargeError,
    StackOverflowError,
    StackUnderflowError,
)

__all__ = [
    "MachineState",
    "create_initial_state",
    "Framebuffer",
    "Keypad",
    "DecodeResult",
    "Instruction",
    "decode",
    "disassemble",
    "parse_hex_program",
    "OpcodeRegistry",
    "Chip8CPU",
    "ExecutionTraceEntry",
    "Chip8Error",
    "InvalidKeyError",
    "MemoryAccessError",
    "RomTooLargeError",
    "StackOverflowError",
    "StackUnderflowError",
]
