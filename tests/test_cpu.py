"""Tests for the Chip8CPU opcode interpreter."""

import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from chip8_vm import Chip8CPU
from chip8_vm.errors import (
    InvalidKeyError,
    MemoryAccessError,
    StackOverflowError,
    StackUnderflowError,
)


def load_words(cpu, *words):
    cpu.load_rom(b"".join(word.to_bytes(2, "big") for word in words))


@pytest.fixture
def cpu():
    return Chip8CPU(rng=random.Random(0))


class TestFetchAndAdvance:
    """Test fetch, decode and the default PC advance."""

    def test_pc_advances_by_two(self, cpu):
        load_words(cpu, 0x6001, 0x6102)
        cpu.execute_cycle()
        assert cpu.get_pc() == 0x202
        cpu.execute_cycle()
        assert cpu.get_pc() == 0x204
        assert cpu.get_cycle_count() == 2

    def test_returns_decode_result(self, cpu):
        load_words(cpu, 0x6A02)
        result = cpu.execute_cycle()
        assert result.key == "OP_LD_IMM"
        assert result.mnemonic == "LD VA, 0x02"

    def test_unknown_opcode_is_noop(self, cpu):
        """Unassigned words only consume the default advance."""
        load_words(cpu, 0x8AB8, 0xFA08, 0x0123)
        before = cpu.dump_registers()
        cpu.run(3)
        assert cpu.get_pc() == 0x206
        assert cpu.dump_registers() == before

    def test_odd_pc_fetches_straddling_word(self, cpu):
        """A jump to an odd address is allowed; the fetch spans the byte pair there."""
        cpu.load_rom(bytes([0x12, 0x01, 0x6A, 0x6B, 0x05]))
        cpu.execute_cycle()
        assert cpu.get_pc() == 0x201

        result = cpu.execute_cycle()
        assert result.instruction.opcode == 0x016A
        assert result.key == "OP_SYS"
        assert cpu.get_pc() == 0x203

        result = cpu.execute_cycle()
        assert result.mnemonic == "LD VB, 0x05"
        assert cpu.get_register(0xB) == 5
        assert cpu.get_pc() == 0x205
        assert cpu.is_halted() is False

    def test_cls(self, cpu):
        load_words(cpu, 0xA000, 0xD005, 0x00E0)
        cpu.run(2)
        assert cpu.framebuffer().sum() > 0
        cpu.execute_cycle()
        assert cpu.framebuffer().sum() == 0
        assert cpu.get_pc() == 0x206


class TestLoadsAndImmediateArithmetic:
    """Test 6xkk and 7xkk."""

    def test_ld_every_byte(self, cpu):
        """LD Vx, kk followed by a read returns kk for all 256 values."""
        for kk in range(256):
            cpu.reset()
            load_words(cpu, 0x6500 | kk)
            cpu.execute_cycle()
            assert cpu.get_register(5) == kk

    def test_add_imm_wraps_without_flag(self, cpu):
        load_words(cpu, 0x6FAA, 0x61F0, 0x7120)
        cpu.run(3)
        assert cpu.get_register(1) == 0x10
        assert cpu.get_register(0xF) == 0xAA

    def test_add_imm_no_overflow(self, cpu):
        load_words(cpu, 0x6105, 0x7103)
        cpu.run(2)
        assert cpu.get_register(1) == 8


class TestAluFamily:
    """Test 8xyN including VF ordering."""

    def run_alu(self, cpu, vx, vy, op, x=1, y=2, vf=0):
        words = [0x6F00 | vf, 0x6000 | (x << 8) | vx, 0x6000 | (y << 8) | vy, 0x8000 | (x << 8) | (y << 4) | op]
        load_words(cpu, *words)
        cpu.run(len(words))

    def test_ld_reg(self, cpu):
        self.run_alu(cpu, 1, 0x7E, 0x0)
        assert cpu.get_register(1) == 0x7E

    def test_or_and_xor(self, cpu):
        self.run_alu(cpu, 0b1100, 0b1010, 0x1)
        assert cpu.get_register(1) == 0b1110
        cpu.reset()
        self.run_alu(cpu, 0b1100, 0b1010, 0x2)
        assert cpu.get_register(1) == 0b1000
        cpu.reset()
        self.run_alu(cpu, 0b1100, 0b1010, 0x3)
        assert cpu.get_register(1) == 0b0110

    @pytest.mark.parametrize("vx,vy,result,carry", [
        (200, 100, 44, 1),
        (100, 100, 200, 0),
        (255, 1, 0, 1),
        (255, 0, 255, 0),
    ])
    def test_add_carry(self, cpu, vx, vy, result, carry):
        self.run_alu(cpu, vx, vy, 0x4)
        assert cpu.get_register(1) == result
        assert cpu.get_register(0xF) == carry

    @pytest.mark.parametrize("vx,vy,result,not_borrow", [
        (10, 3, 7, 1),
        (3, 10, 249, 0),
        (5, 5, 0, 1),
    ])
    def test_sub(self, cpu, vx, vy, result, not_borrow):
        self.run_alu(cpu, vx, vy, 0x5)
        assert cpu.get_register(1) == result
        assert cpu.get_register(0xF) == not_borrow

    @pytest.mark.parametrize("vx,vy,result,not_borrow", [
        (3, 10, 7, 1),
        (10, 3, 249, 0),
    ])
    def test_subn(self, cpu, vx, vy, result, not_borrow):
        self.run_alu(cpu, vx, vy, 0x7)
        assert cpu.get_register(1) == result
        assert cpu.get_register(0xF) == not_borrow

    def test_shr_captures_lsb(self, cpu):
        self.run_alu(cpu, 0x05, 0xFF, 0x6)
        assert cpu.get_register(1) == 0x02
        assert cpu.get_register(0xF) == 1

    def test_shr_even(self, cpu):
        self.run_alu(cpu, 0x04, 0x00, 0x6, vf=1)
        assert cpu.get_register(1) == 0x02
        assert cpu.get_register(0xF) == 0

    def test_shl_captures_msb(self, cpu):
        self.run_alu(cpu, 0x81, 0x00, 0xE)
        assert cpu.get_register(1) == 0x02
        assert cpu.get_register(0xF) == 1

    def test_shl_no_msb(self, cpu):
        self.run_alu(cpu, 0x40, 0x00, 0xE, vf=1)
        assert cpu.get_register(1) == 0x80
        assert cpu.get_register(0xF) == 0

    def test_add_into_vf_keeps_flag(self, cpu):
        """With x == F the flag, computed from the pre-write operands, wins."""
        load_words(cpu, 0x6FFF, 0x6101, 0x8F14)
        cpu.run(3)
        assert cpu.get_register(0xF) == 1

    def test_sub_into_vf_keeps_flag(self, cpu):
        load_words(cpu, 0x6F05, 0x6103, 0x8F15)
        cpu.run(3)
        assert cpu.get_register(0xF) == 1

    def test_shr_vf_itself(self, cpu):
        load_words(cpu, 0x6F02, 0x8F06)
        cpu.run(2)
        assert cpu.get_register(0xF) == 0

    def test_vf_as_source_operand(self, cpu):
        """VF read as Vy uses its value before the flag overwrite."""
        load_words(cpu, 0x6FC8, 0x6164, 0x81F4)
        cpu.run(3)
        assert cpu.get_register(1) == 44
        assert cpu.get_register(0xF) == 1


class TestSkips:
    """Test conditional skips."""

    @pytest.mark.parametrize("words,pc", [
        ((0x6105, 0x3105), 0x206),
        ((0x6105, 0x3106), 0x204),
        ((0x6105, 0x4106), 0x206),
        ((0x6105, 0x4105), 0x204),
        ((0x6105, 0x6205, 0x5120), 0x208),
        ((0x6105, 0x6206, 0x5120), 0x206),
    ])
    def test_skip(self, cpu, words, pc):
        load_words(cpu, *words)
        cpu.run(len(words))
        assert cpu.get_pc() == pc

    def test_sne_reg_skips_when_different(self, cpu):
        """9xy0 skips when Vx != Vy."""
        load_words(cpu, 0x6105, 0x6206, 0x9120)
        cpu.run(3)
        assert cpu.get_pc() == 0x208

    def test_sne_reg_does_not_skip_when_equal(self, cpu):
        load_words(cpu, 0x6105, 0x6205, 0x9120)
        cpu.run(3)
        assert cpu.get_pc() == 0x206


class TestControlFlow:
    """Test jumps, calls and returns."""

    def test_jp(self, cpu):
        load_words(cpu, 0x1ABC)
        cpu.execute_cycle()
        assert cpu.get_pc() == 0xABC
        assert cpu.state.sp == 0

    def test_call_pushes_next_instruction(self, cpu):
        load_words(cpu, 0x2300)
        cpu.execute_cycle()
        assert cpu.get_pc() == 0x300
        assert cpu.state.sp == 1
        assert cpu.state.stack[0] == 0x202

    def test_call_ret_round_trip(self, cpu):
        # 200: CALL 206 / 202: LD V1, 1 / 204: JP 204 / 206: RET
        load_words(cpu, 0x2206, 0x6101, 0x1204, 0x00EE)
        cpu.run(2)
        assert cpu.get_pc() == 0x202
        assert cpu.state.sp == 0
        cpu.execute_cycle()
        assert cpu.get_register(1) == 1

    def test_nested_calls_sixteen_deep(self, cpu):
        """Sixteen nested calls unwind back to the instruction after the first."""
        words = [0x2204, 0x1202]
        for k in range(1, 16):
            words += [0x2000 | (0x204 + 4 * k), 0x00EE]
        words.append(0x00EE)
        load_words(cpu, *words)

        cpu.run(16)
        assert cpu.state.sp == 16
        assert cpu.get_pc() == 0x240

        cpu.run(16)
        assert cpu.state.sp == 0
        assert cpu.get_pc() == 0x202

    def test_jp_v0(self, cpu):
        load_words(cpu, 0x6010, 0xB300)
        cpu.run(2)
        assert cpu.get_pc() == 0x310


class TestIndexAndMemory:
    """Test I register and memory transfers."""

    def test_ld_i(self, cpu):
        load_words(cpu, 0xA123)
        cpu.execute_cycle()
        assert cpu.get_i() == 0x123

    def test_add_i_no_flag(self, cpu):
        load_words(cpu, 0x6F07, 0xAFFF, 0x6102, 0xF11E)
        cpu.run(4)
        assert cpu.get_i() == 0x1001
        assert cpu.get_register(0xF) == 0x07

    def test_ld_f(self, cpu):
        load_words(cpu, 0x6A0F, 0xFA29)
        cpu.run(2)
        assert cpu.get_i() == 75

    @pytest.mark.parametrize("value,digits", [(254, [2, 5, 4]), (7, [0, 0, 7]), (100, [1, 0, 0])])
    def test_bcd(self, cpu, value, digits):
        load_words(cpu, 0x6300 | value, 0xA300, 0xF333)
        cpu.run(3)
        assert list(cpu.state.memory[0x300:0x303]) == digits
        assert cpu.get_i() == 0x300

    def test_store_load_round_trip(self, cpu):
        """Fx55 then Fx65 from the same I restores V0..Vx."""
        load_words(
            cpu,
            0x6011, 0x6122, 0x6233, 0x6344,
            0xA400, 0xF355,
            0x6000, 0x6100, 0x6200, 0x6300,
            0xF365,
        )
        cpu.run(11)
        assert [cpu.get_register(i) for i in range(4)] == [0x11, 0x22, 0x33, 0x44]
        assert cpu.get_i() == 0x400

    def test_store_range_is_inclusive(self, cpu):
        load_words(cpu, 0x6101, 0x6202, 0xA400, 0xF155)
        cpu.run(4)
        assert list(cpu.state.memory[0x400:0x403]) == [0, 1, 0]

    def test_load_only_touches_v0_to_vx(self, cpu):
        load_words(cpu, 0x6599, 0xA000, 0xF165)
        cpu.run(3)
        assert cpu.get_register(0) == 0xF0
        assert cpu.get_register(1) == 0x90
        assert cpu.get_register(5) == 0x99


class TestRandom:
    """Test Cxkk."""

    def test_rnd_masks_with_kk(self):
        cpu = Chip8CPU(rng=random.Random(1234))
        load_words(cpu, 0xC30F)
        cpu.execute_cycle()
        assert cpu.get_register(3) == random.Random(1234).randint(0, 255) & 0x0F

    def test_rnd_zero_mask(self, cpu):
        load_words(cpu, 0xC300)
        cpu.execute_cycle()
        assert cpu.get_register(3) == 0


class TestDraw:
    """Test Dxyn against the framebuffer."""

    def test_draw_sets_vf_on_collision(self, cpu):
        load_words(cpu, 0xA000, 0xD005, 0xD005)
        cpu.run(2)
        assert cpu.get_register(0xF) == 0
        cpu.execute_cycle()
        assert cpu.get_register(0xF) == 1
        assert cpu.framebuffer().sum() == 0

    def test_draw_uses_register_coordinates(self, cpu):
        load_words(cpu, 0x613E, 0x621F, 0xA000, 0xD121)
        cpu.run(4)
        pixels = cpu.framebuffer()
        assert list(pixels[31, 62:64]) == [1, 1]
        assert list(pixels[31, 0:2]) == [1, 1]

    def test_draw_with_vf_as_coordinate(self, cpu):
        """VF read as Vx is the pre-draw value; the collision flag then replaces it."""
        load_words(cpu, 0x6F3E, 0xA000, 0xDF01, 0xDF01)
        cpu.run(3)
        pixels = cpu.framebuffer()
        assert cpu.get_register(0xF) == 0
        assert list(pixels[0, 62:64]) == [1, 1]
        assert list(pixels[0, 0:2]) == [1, 1]

        # VF is now 0, so the second draw lands at x=0 and erases columns 0-1
        cpu.execute_cycle()
        assert cpu.get_register(0xF) == 1
        assert list(cpu.framebuffer()[0, 0:4]) == [0, 0, 1, 1]


class TestTimersAndKeys:
    """Test timers, key skips and the key wait."""

    def test_timer_roundtrip(self, cpu):
        load_words(cpu, 0x6103, 0xF115, 0xF118)
        cpu.run(3)
        assert cpu.delay_timer == 3
        assert cpu.sound_timer == 3
        assert cpu.sound_active is True
        cpu.decrement_timers()
        cpu.decrement_timers()
        cpu.decrement_timers()
        cpu.decrement_timers()
        assert cpu.delay_timer == 0
        assert cpu.sound_active is False

    def test_ld_vx_dt(self, cpu):
        load_words(cpu, 0x6109, 0xF115, 0xF207)
        cpu.run(2)
        cpu.decrement_timers()
        cpu.execute_cycle()
        assert cpu.get_register(2) == 8

    def test_skp_and_sknp(self, cpu):
        load_words(cpu, 0x6107, 0xE19E)
        cpu.key_down(7)
        assert cpu.keypad.is_down(7) is True
        cpu.run(2)
        assert cpu.get_pc() == 0x206

        cpu.reset()
        load_words(cpu, 0x6107, 0xE1A1)
        cpu.run(2)
        assert cpu.get_pc() == 0x206

        cpu.reset()
        load_words(cpu, 0x6107, 0xE1A1)
        cpu.key_down(7)
        cpu.run(2)
        assert cpu.get_pc() == 0x204

    def test_wait_blocks_until_key(self, cpu):
        """Fx0A never advances PC with all keys up."""
        load_words(cpu, 0xF30A)
        for _ in range(5):
            cpu.execute_cycle()
            assert cpu.get_pc() == 0x200
            assert cpu.is_waiting_for_key() is True

        cpu.key_down(7)
        cpu.execute_cycle()
        assert cpu.get_pc() == 0x202
        assert cpu.get_register(3) == 7
        assert cpu.is_waiting_for_key() is False

    def test_wait_highest_key_wins(self, cpu):
        load_words(cpu, 0xF30A)
        cpu.key_down(2)
        cpu.key_down(9)
        cpu.key_down(4)
        cpu.execute_cycle()
        assert cpu.get_register(3) == 9

    def test_wait_ignores_released_key(self, cpu):
        load_words(cpu, 0xF30A)
        cpu.key_down(1)
        cpu.key_up(1)
        cpu.execute_cycle()
        assert cpu.get_pc() == 0x200


class TestFaults:
    """Test fail-fast handling of non-conforming programs."""

    def test_stack_overflow(self, cpu):
        """The 17th nested CALL faults, restores PC and halts."""
        load_words(cpu, 0x2200)
        cpu.run(16)
        with pytest.raises(StackOverflowError):
            cpu.execute_cycle()
        assert cpu.get_pc() == 0x200
        assert cpu.state.sp == 16
        assert cpu.is_halted() is True

    def test_ret_on_empty_stack(self, cpu):
        load_words(cpu, 0x00EE)
        with pytest.raises(StackUnderflowError):
            cpu.execute_cycle()
        assert cpu.get_pc() == 0x200

    def test_halted_cpu_refuses_cycles(self, cpu):
        load_words(cpu, 0x00EE)
        with pytest.raises(StackUnderflowError):
            cpu.execute_cycle()
        with pytest.raises(RuntimeError, match="halted"):
            cpu.execute_cycle()
        cpu.reset()
        assert cpu.is_halted() is False

    def test_fetch_past_end(self, cpu):
        load_words(cpu, 0x1FFF)
        cpu.execute_cycle()
        with pytest.raises(MemoryAccessError):
            cpu.execute_cycle()
        assert cpu.get_pc() == 0xFFF

    def test_bcd_out_of_range_is_atomic(self, cpu):
        load_words(cpu, 0x63FF, 0xAFFE, 0xF333)
        cpu.run(2)
        with pytest.raises(MemoryAccessError):
            cpu.execute_cycle()
        assert cpu.state.memory[0xFFE] == 0
        assert cpu.state.memory[0xFFF] == 0
        assert cpu.get_pc() == 0x204

    def test_store_out_of_range_is_atomic(self, cpu):
        load_words(cpu, 0x6001, 0xAFFE, 0xF255)
        cpu.run(2)
        with pytest.raises(MemoryAccessError):
            cpu.execute_cycle()
        assert cpu.state.memory[0xFFE] == 0

    def test_draw_out_of_range(self, cpu):
        load_words(cpu, 0xAFFF, 0xD00F)
        cpu.execute_cycle()
        with pytest.raises(MemoryAccessError):
            cpu.execute_cycle()
        assert cpu.framebuffer().sum() == 0

    def test_index_overflow(self, cpu):
        load_words(cpu, 0x61FF, 0xAFFF, 0xF11E)
        cpu.run(2)
        cpu.state.I = 0xFFFF
        with pytest.raises(MemoryAccessError):
            cpu.execute_cycle()
        assert cpu.get_i() == 0xFFFF

    def test_skp_invalid_key_value(self, cpu):
        load_words(cpu, 0x6110, 0xE19E)
        cpu.execute_cycle()
        with pytest.raises(InvalidKeyError):
            cpu.execute_cycle()
        assert cpu.get_pc() == 0x202

    def test_host_key_out_of_range(self, cpu):
        with pytest.raises(InvalidKeyError):
            cpu.key_down(16)


class TestTrace:
    """Test the optional execution trace."""

    def test_trace_records_cycles(self):
        cpu = Chip8CPU(trace=True)
        load_words(cpu, 0x6A02, 0xFA29)
        cpu.run(2)
        trace = cpu.get_trace()
        assert [entry.mnemonic for entry in trace] == ["LD VA, 0x02", "LD F, VA"]
        assert trace[0].address == 0x200
        assert trace[0].pre_state["registers"]["VA"] == 0
        assert trace[0].post_state["registers"]["VA"] == 2
        assert trace[1].post_state["I"] == 10

    def test_trace_records_fault(self):
        cpu = Chip8CPU(trace=True)
        load_words(cpu, 0x00EE)
        with pytest.raises(StackUnderflowError):
            cpu.execute_cycle()
        entry = cpu.get_trace()[-1]
        assert entry.error is not None
        assert entry.key == "OP_RET"
        assert cpu.get_summary()["errors"] == [entry.error]

    def test_trace_is_bounded(self):
        cpu = Chip8CPU(trace=True, max_trace=3)
        load_words(cpu, 0x1200)
        cpu.run(10)
        assert len(cpu.get_trace()) == 3

    def test_print_trace(self, capsys):
        cpu = Chip8CPU(trace=True)
        load_words(cpu, 0x6A02, 0x1300)
        cpu.run(2)
        cpu.print_trace()
        out = capsys.readouterr().out

        assert "CHIP-8 EXECUTION TRACE" in out
        assert "200: 6A02  LD VA, 0x02" in out
        assert "Changes: VA: 00 → 02" in out
        assert "PC: 202 → 300" in out
        assert "PC=300" in out

    def test_trace_disabled_by_default(self, cpu):
        load_words(cpu, 0x1200)
        cpu.run(5)
        assert cpu.get_trace() == []
