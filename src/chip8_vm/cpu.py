"""Chip8CPU: opcode interpreter driving the CHIP-8 machine.

This module implements the fetch-decode-execute pipeline:
    MEMORY -> FETCH -> DECODE -> KEY -> REGISTRY -> EXECUTE -> STATE

The interpreter owns the machine state, framebuffer and keypad as one unit.
A host calls ``execute_cycle()`` at its instruction rate and
``decrement_timers()`` at 60 Hz; there is no internal clock. Key events and
ROM loads are applied between cycles.

Any fault raised while executing an instruction restores PC to that
instruction, marks the machine halted and propagates to the host.
"""

import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Union

import numpy as np

from .decode import DecodeResult, decode
from .errors import Chip8Error
from .registry import OpcodeRegistry, get_registry
from .state import MachineState, create_initial_state

logger = logging.getLogger(__name__)


@dataclass
class ExecutionTraceEntry:
    """Single entry in the execution trace.

    Attributes:
        cycle: Cycle number (0-indexed)
        address: PC the instruction was fetched from
        opcode: Raw instruction word (None if the fetch itself faulted)
        key: Registry key the word decoded to
        mnemonic: Assembly rendering of the word
        pre_state: State snapshot before execution
        post_state: State snapshot after execution
        error: Fault message if execution failed
    """
    cycle: int
    address: int
    opcode: Optional[int]
    key: str
    mnemonic: str
    pre_state: dict
    post_state: dict
    error: Optional[str] = None


class Chip8CPU:
    """CHIP-8 interpreter.

    Attributes:
        state: Machine state (memory, registers, timers, display, keypad)
        registry: OpcodeRegistry with the instruction handlers
        trace: Most recent execution trace entries (when tracing)
        trace_enabled: Whether cycles are recorded
    """

    DEFAULT_MAX_TRACE = 10000

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        trace: bool = False,
        max_trace: int = DEFAULT_MAX_TRACE
    ):
        """Initialize a reset machine.

        Args:
            rng: Random source for RND (unseeded if None)
            trace: Record an ExecutionTraceEntry per cycle
            max_trace: Number of trace entries kept; older ones are dropped
        """
        self.state: MachineState = create_initial_state(rng=rng)
        self.registry: OpcodeRegistry = get_registry()
        self.trace_enabled = trace
        self.trace: Deque[ExecutionTraceEntry] = deque(maxlen=max_trace)

    def reset(self) -> None:
        """Reset memory, registers, screen and keypad; PC = 0x200."""
        self.state.reset()
        self.trace.clear()

    def load_rom(self, data: Union[bytes, bytearray, List[int]]) -> None:
        """Copy a ROM into memory at 0x200.

        Raises:
            RomTooLargeError: If the ROM is longer than 3584 bytes
        """
        self.state.load_rom(data)

    # =========================================================================
    # Execution
    # =========================================================================

    def execute_cycle(self) -> DecodeResult:
        """Execute a single instruction.

        Reads the big-endian word at PC, advances PC by 2, then dispatches.
        Jumps, calls, skips and the key wait overwrite that default advance.

        Returns:
            DecodeResult of the executed instruction

        Raises:
            RuntimeError: If the CPU is halted by an earlier fault
            Chip8Error: If the instruction faults (the CPU is then halted)
        """
        state = self.state
        if state.halted:
            raise RuntimeError("CPU is halted")

        pc = state.pc
        pre_state = state.snapshot() if self.trace_enabled else {}
        was_waiting = state.awaiting_key is not None
        result: Optional[DecodeResult] = None

        try:
            opcode = state.read_word(pc)
            result = decode(opcode)
            state.pc = pc + 2
            self.registry.execute(state, result.key, result.instruction)
        except Chip8Error as e:
            state.pc = pc
            state.halted = True
            logger.error("Fault at PC=0x%03X: %s", pc, e)
            self._record(pc, result, pre_state, error=str(e))
            raise

        if was_waiting and state.awaiting_key is None:
            logger.debug(
                "Key wait complete: V%X = 0x%X", result.instruction.x, state.registers[result.instruction.x]
            )

        self._record(pc, result, pre_state)
        state.cycle_count += 1
        return result

    def run(self, cycles: int, cycles_per_tick: Optional[int] = None) -> int:
        """Execute a fixed number of cycles for a headless host.

        Args:
            cycles: Number of cycles to execute
            cycles_per_tick: If set, decrement the timers after every this
                many cycles

        Returns:
            Number of cycles executed

        Raises:
            Chip8Error: If an instruction faults
        """
        if cycles_per_tick is not None and cycles_per_tick <= 0:
            raise ValueError("cycles_per_tick must be positive")

        for executed in range(1, cycles + 1):
            self.execute_cycle()
            if cycles_per_tick and executed % cycles_per_tick == 0:
                self.decrement_timers()
        return cycles

    def decrement_timers(self) -> None:
        """Timer tick: decrement DT and ST by one each, clamped at zero."""
        self.state.decrement_timers()

    # =========================================================================
    # Host events and peripherals
    # =========================================================================

    def key_down(self, key: int) -> None:
        """Press a key (0-15)."""
        self.state.keypad.set_down(key)

    def key_up(self, key: int) -> None:
        """Release a key (0-15)."""
        self.state.keypad.set_up(key)

    @property
    def keypad(self):
        return self.state.keypad

    def framebuffer(self) -> np.ndarray:
        """Read-only (32, 64) array of 0/1 pixels."""
        return self.state.display.snapshot()

    @property
    def sound_active(self) -> bool:
        """True while the sound timer is non-zero (buzzer on)."""
        return self.state.sound_active

    @property
    def delay_timer(self) -> int:
        return self.state.DT

    @property
    def sound_timer(self) -> int:
        return self.state.ST

    # =========================================================================
    # Inspection
    # =========================================================================

    def get_register(self, reg: Union[int, str]) -> int:
        """Get value of a register by index (0-15) or name ("VA")."""
        return self.state.get_register(reg)

    def dump_registers(self) -> Dict[str, int]:
        return self.state.dump_registers()

    def get_pc(self) -> int:
        return self.state.pc

    def get_i(self) -> int:
        return self.state.I

    def get_cycle_count(self) -> int:
        return self.state.cycle_count

    def is_halted(self) -> bool:
        return self.state.halted

    def is_waiting_for_key(self) -> bool:
        """True while an Fx0A instruction is polling for a key."""
        return self.state.awaiting_key is not None

    def get_trace(self) -> List[ExecutionTraceEntry]:
        return list(self.trace)

    def print_trace(self) -> None:
        """Print execution trace in human-readable format."""
        print("=" * 70)
        print("CHIP-8 EXECUTION TRACE")
        print("=" * 70)

        for entry in self.trace:
            status = "OK" if not entry.error else f"FAULT: {entry.error}"
            word = f"{entry.opcode:04X}" if entry.opcode is not None else "----"
            print(f"\n[Cycle {entry.cycle}] {entry.address:03X}: {word}  {entry.mnemonic:<18} {status}")

            pre_regs = entry.pre_state.get("registers", {})
            post_regs = entry.post_state.get("registers", {})
            changes = []
            for reg in sorted(pre_regs.keys()):
                if pre_regs[reg] != post_regs.get(reg, pre_regs[reg]):
                    changes.append(f"{reg}: {pre_regs[reg]:02X} → {post_regs[reg]:02X}")
            for name in ("I", "sp", "DT", "ST"):
                before, after = entry.pre_state.get(name), entry.post_state.get(name)
                if before != after:
                    changes.append(f"{name}: {before} → {after}")
            if changes:
                print(f"  Changes: {', '.join(changes)}")

            pre_pc = entry.pre_state.get("pc", 0)
            post_pc = entry.post_state.get("pc", 0)
            if post_pc != pre_pc + 2:
                print(f"  PC: {pre_pc:03X} → {post_pc:03X}")

        print("\n" + "=" * 70)
        print("FINAL STATE")
        print("=" * 70)
        print(f"  {self.state}")

    def get_summary(self) -> Dict:
        """Get execution summary.

        Returns:
            Dictionary with execution statistics and final state
        """
        return {
            "cycles": self.get_cycle_count(),
            "halted": self.is_halted(),
            "waiting_for_key": self.is_waiting_for_key(),
            "registers": self.dump_registers(),
            "I": self.get_i(),
            "pc": self.get_pc(),
            "sp": self.state.sp,
            "DT": self.state.DT,
            "ST": self.state.ST,
            "sound_active": self.sound_active,
            "lit_pixels": self.state.display.lit_count(),
            "trace_length": len(self.trace),
            "errors": [e.error for e in self.trace if e.error],
        }

    def _record(self, address: int, result: Optional[DecodeResult], pre_state: dict, error: Optional[str] = None) -> None:
        if not self.trace_enabled:
            return
        entry = ExecutionTraceEntry(
            cycle=self.state.cycle_count,
            address=address,
            opcode=result.instruction.opcode if result else None,
            key=result.key if result else "OP_FETCH",
            mnemonic=result.mnemonic if result else "<FETCH FAULT>",
            pre_state=pre_state,
            post_state=self.state.snapshot(),
            error=error,
        )
        self.trace.append(entry)
