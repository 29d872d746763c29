"""OpcodeRegistry: verified CHIP-8 instruction handlers.

Each decoded registry key maps to exactly one handler. A handler receives the
machine state (with PC already advanced past the instruction) and the decoded
fields, and mutates the state in place.

Handlers are atomic: every check that can fail (memory range, stack depth,
key index) runs before the first write, so a faulting instruction leaves
registers, memory, screen and stack untouched.

Flag-producing handlers compute VF into a local from the pre-write operands,
write Vx, then write VF. When x is 0xF the flag therefore wins.
"""

from typing import Callable, Dict, Optional

from .decode import VALID_KEYS, Instruction
from .errors import MemoryAccessError
from .state import FLAG_REGISTER, FONT_START, GLYPH_SIZE, MachineState

Handler = Callable[[MachineState, Instruction], None]


class OpcodeRegistry:
    """Frozen registry of instruction handlers.

    Attributes:
        _handlers: Dictionary mapping operation keys to handler functions
        _frozen: Whether the registry is locked against modifications
    """

    def __init__(self):
        """Initialize registry with every base-set handler."""
        self._handlers: Dict[str, Handler] = {}
        self._frozen = False
        self._register_all_handlers()
        missing = VALID_KEYS - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for keys: {sorted(missing)}")
        self.freeze()

    def _register_all_handlers(self) -> None:
        # Flow control
        self.register("OP_CLS", self._op_cls)
        self.register("OP_RET", self._op_ret)
        self.register("OP_SYS", self._op_nop)
        self.register("OP_JP", self._op_jp)
        self.register("OP_CALL", self._op_call)
        self.register("OP_JP_V0", self._op_jp_v0)

        # Conditional skips
        self.register("OP_SE_IMM", self._op_se_imm)
        self.register("OP_SNE_IMM", self._op_sne_imm)
        self.register("OP_SE_REG", self._op_se_reg)
        self.register("OP_SNE_REG", self._op_sne_reg)
        self.register("OP_SKP", self._op_skp)
        self.register("OP_SKNP", self._op_sknp)

        # Register loads and arithmetic
        self.register("OP_LD_IMM", self._op_ld_imm)
        self.register("OP_ADD_IMM", self._op_add_imm)
        self.register("OP_LD_REG", self._op_ld_reg)
        self.register("OP_OR", self._op_or)
        self.register("OP_AND", self._op_and)
        self.register("OP_XOR", self._op_xor)
        self.register("OP_ADD_REG", self._op_add_reg)
        self.register("OP_SUB", self._op_sub)
        self.register("OP_SHR", self._op_shr)
        self.register("OP_SUBN", self._op_subn)
        self.register("OP_SHL", self._op_shl)
        self.register("OP_RND", self._op_rnd)

        # Address register and memory
        self.register("OP_LD_I", self._op_ld_i)
        self.register("OP_ADD_I_VX", self._op_add_i_vx)
        self.register("OP_LD_F_VX", self._op_ld_f_vx)
        self.register("OP_LD_B_VX", self._op_ld_b_vx)
        self.register("OP_LD_MEM_VX", self._op_ld_mem_vx)
        self.register("OP_LD_VX_MEM", self._op_ld_vx_mem)

        # Peripherals
        self.register("OP_DRW", self._op_drw)
        self.register("OP_LD_VX_DT", self._op_ld_vx_dt)
        self.register("OP_LD_VX_K", self._op_ld_vx_k)
        self.register("OP_LD_DT_VX", self._op_ld_dt_vx)
        self.register("OP_LD_ST_VX", self._op_ld_st_vx)

        self.register("OP_NOP", self._op_nop)

    def register(self, key: str, handler: Handler) -> None:
        """Register an instruction handler.

        Args:
            key: Operation key (e.g., "OP_DRW")
            handler: Function taking (state, instruction)

        Raises:
            RuntimeError: If registry is frozen
            ValueError: If key already registered
        """
        if self._frozen:
            raise RuntimeError("Cannot register handlers: registry is frozen")
        if key in self._handlers:
            raise ValueError(f"Handler already registered: {key}")
        self._handlers[key] = handler

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen

    def get_valid_keys(self) -> set:
        return set(self._handlers.keys())

    def execute(self, state: MachineState, key: str, instruction: Instruction) -> None:
        """Run the handler for key against state.

        Raises:
            KeyError: If key not in registry
        """
        if key not in self._handlers:
            raise KeyError(f"Unknown operation key: {key}")
        self._handlers[key](state, instruction)

    # =========================================================================
    # Flow control
    # =========================================================================

    def _op_cls(self, state: MachineState, ins: Instruction) -> None:
        """00E0 - CLS."""
        state.display.clear()

    def _op_ret(self, state: MachineState, ins: Instruction) -> None:
        """00EE - RET: decrement SP, then jump to stack[SP]."""
        state.pc = state.pop()

    def _op_jp(self, state: MachineState, ins: Instruction) -> None:
        """1nnn - JP addr."""
        state.pc = ins.nnn

    def _op_call(self, state: MachineState, ins: Instruction) -> None:
        """2nnn - CALL addr.

        The pushed address is the already-advanced PC, i.e. the instruction
        after the CALL. Push stores at stack[SP] then increments SP, mirroring
        RET's decrement-then-read.
        """
        state.push(state.pc)
        state.pc = ins.nnn

    def _op_jp_v0(self, state: MachineState, ins: Instruction) -> None:
        """Bnnn - JP V0, addr. An out-of-memory target faults on the next fetch."""
        state.pc = state.registers[0] + ins.nnn

    # =========================================================================
    # Conditional skips
    # =========================================================================

    def _op_se_imm(self, state: MachineState, ins: Instruction) -> None:
        if state.registers[ins.x] == ins.kk:
            state.pc += 2

    def _op_sne_imm(self, state: MachineState, ins: Instruction) -> None:
        if state.registers[ins.x] != ins.kk:
            state.pc += 2

    def _op_se_reg(self, state: MachineState, ins: Instruction) -> None:
        if state.registers[ins.x] == state.registers[ins.y]:
            state.pc += 2

    def _op_sne_reg(self, state: MachineState, ins: Instruction) -> None:
        """9xy0 - SNE Vx, Vy: skip when the registers differ."""
        if state.registers[ins.x] != state.registers[ins.y]:
            state.pc += 2

    def _op_skp(self, state: MachineState, ins: Instruction) -> None:
        """Ex9E - SKP Vx. A register value above 0xF raises InvalidKeyError."""
        if state.keypad.is_down(state.registers[ins.x]):
            state.pc += 2

    def _op_sknp(self, state: MachineState, ins: Instruction) -> None:
        """ExA1 - SKNP Vx."""
        if not state.keypad.is_down(state.registers[ins.x]):
            state.pc += 2

    # =========================================================================
    # Register loads and arithmetic
    # =========================================================================

    def _op_ld_imm(self, state: MachineState, ins: Instruction) -> None:
        state.registers[ins.x] = ins.kk

    def _op_add_imm(self, state: MachineState, ins: Instruction) -> None:
        """7xkk - ADD Vx, byte. Wraps at 8 bits; VF is not touched."""
        state.registers[ins.x] = (state.registers[ins.x] + ins.kk) & 0xFF

    def _op_ld_reg(self, state: MachineState, ins: Instruction) -> None:
        state.registers[ins.x] = state.registers[ins.y]

    def _op_or(self, state: MachineState, ins: Instruction) -> None:
        state.registers[ins.x] |= state.registers[ins.y]

    def _op_and(self, state: MachineState, ins: Instruction) -> None:
        state.registers[ins.x] &= state.registers[ins.y]

    def _op_xor(self, state: MachineState, ins: Instruction) -> None:
        state.registers[ins.x] ^= state.registers[ins.y]

    def _op_add_reg(self, state: MachineState, ins: Instruction) -> None:
        """8xy4 - ADD Vx, Vy. VF = 1 if the unsigned sum exceeds 255."""
        total = state.registers[ins.x] + state.registers[ins.y]
        carry = 1 if total > 0xFF else 0
        self._write_with_flag(state, ins.x, total & 0xFF, carry)

    def _op_sub(self, state: MachineState, ins: Instruction) -> None:
        """8xy5 - SUB Vx, Vy. VF = NOT borrow, i.e. 1 when Vx >= Vy."""
        vx, vy = state.registers[ins.x], state.registers[ins.y]
        not_borrow = 1 if vx >= vy else 0
        self._write_with_flag(state, ins.x, (vx - vy) & 0xFF, not_borrow)

    def _op_subn(self, state: MachineState, ins: Instruction) -> None:
        """8xy7 - SUBN Vx, Vy. Vx = Vy - Vx, VF = 1 when Vy >= Vx."""
        vx, vy = state.registers[ins.x], state.registers[ins.y]
        not_borrow = 1 if vy >= vx else 0
        self._write_with_flag(state, ins.x, (vy - vx) & 0xFF, not_borrow)

    def _op_shr(self, state: MachineState, ins: Instruction) -> None:
        """8xy6 - SHR Vx. VF = bit shifted out (pre-shift LSB). Vy is ignored."""
        vx = state.registers[ins.x]
        self._write_with_flag(state, ins.x, vx >> 1, vx & 0x01)

    def _op_shl(self, state: MachineState, ins: Instruction) -> None:
        """8xyE - SHL Vx. VF = bit shifted out (pre-shift MSB). Vy is ignored."""
        vx = state.registers[ins.x]
        self._write_with_flag(state, ins.x, (vx << 1) & 0xFF, (vx >> 7) & 0x01)

    def _op_rnd(self, state: MachineState, ins: Instruction) -> None:
        """Cxkk - RND Vx, byte."""
        state.registers[ins.x] = state.rng.randint(0, 0xFF) & ins.kk

    # =========================================================================
    # Address register and memory
    # =========================================================================

    def _op_ld_i(self, state: MachineState, ins: Instruction) -> None:
        state.I = ins.nnn

    def _op_add_i_vx(self, state: MachineState, ins: Instruction) -> None:
        """Fx1E - ADD I, Vx. VF is not touched.

        I is not masked to 12 bits; a sum past 16 bits is a fault.
        """
        total = state.I + state.registers[ins.x]
        if total > 0xFFFF:
            raise MemoryAccessError(total, 0, "I register overflow")
        state.I = total

    def _op_ld_f_vx(self, state: MachineState, ins: Instruction) -> None:
        """Fx29 - LD F, Vx: point I at the font glyph for digit Vx."""
        state.I = FONT_START + state.registers[ins.x] * GLYPH_SIZE

    def _op_ld_b_vx(self, state: MachineState, ins: Instruction) -> None:
        """Fx33 - LD B, Vx: hundreds, tens and ones digits at I, I+1, I+2."""
        state.check_range(state.I, 3, "BCD store")
        value = state.registers[ins.x]
        state.memory[state.I] = value // 100
        state.memory[state.I + 1] = (value // 10) % 10
        state.memory[state.I + 2] = value % 10

    def _op_ld_mem_vx(self, state: MachineState, ins: Instruction) -> None:
        """Fx55 - LD [I], Vx: store V0..Vx inclusive. I is left unchanged."""
        count = ins.x + 1
        state.check_range(state.I, count, "register store")
        state.memory[state.I:state.I + count] = bytes(state.registers[:count])

    def _op_ld_vx_mem(self, state: MachineState, ins: Instruction) -> None:
        """Fx65 - LD Vx, [I]: load V0..Vx inclusive. I is left unchanged."""
        count = ins.x + 1
        state.check_range(state.I, count, "register load")
        state.registers[:count] = list(state.memory[state.I:state.I + count])

    # =========================================================================
    # Peripherals
    # =========================================================================

    def _op_drw(self, state: MachineState, ins: Instruction) -> None:
        """Dxyn - DRW Vx, Vy, nibble. VF = 1 if any lit pixel was erased."""
        collision = state.display.draw_sprite(
            state.memory, ins.n, state.I, state.registers[ins.x], state.registers[ins.y]
        )
        state.registers[FLAG_REGISTER] = 1 if collision else 0

    def _op_ld_vx_dt(self, state: MachineState, ins: Instruction) -> None:
        state.registers[ins.x] = state.DT & 0xFF

    def _op_ld_vx_k(self, state: MachineState, ins: Instruction) -> None:
        """Fx0A - LD Vx, K: wait for a key.

        With no key down the instruction re-executes next cycle (PC is pulled
        back over the default advance). Otherwise Vx gets the highest-indexed
        key down; the scan covers all 16 keys and the last hit wins.
        """
        found: Optional[int] = None
        for key, down in enumerate(state.keypad.snapshot()):
            if down:
                found = key

        if found is None:
            state.pc -= 2
            state.awaiting_key = ins.x
            return

        state.registers[ins.x] = found
        state.awaiting_key = None

    def _op_ld_dt_vx(self, state: MachineState, ins: Instruction) -> None:
        state.DT = state.registers[ins.x]

    def _op_ld_st_vx(self, state: MachineState, ins: Instruction) -> None:
        state.ST = state.registers[ins.x]

    def _op_nop(self, state: MachineState, ins: Instruction) -> None:
        """0nnn SYS and unassigned words: only the default PC advance applies."""

    # =========================================================================
    # Helper Methods
    # =========================================================================

    @staticmethod
    def _write_with_flag(state: MachineState, x: int, result: int, flag: int) -> None:
        state.registers[x] = result
        state.registers[FLAG_REGISTER] = flag


# Singleton registry instance
_registry: Optional[OpcodeRegistry] = None


def get_registry() -> OpcodeRegistry:
    """Get the singleton opcode registry instance."""
    global _registry
    if _registry is None:
        _registry = OpcodeRegistry()
    return _registry
