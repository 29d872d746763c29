"""Tests for OpcodeRegistry."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from chip8_vm.decode import VALID_KEYS, Instruction
from chip8_vm.registry import OpcodeRegistry, get_registry
from chip8_vm.state import MachineState


class TestRegistry:
    """Test registry construction and freezing."""

    def test_covers_every_decoder_key(self):
        assert get_registry().get_valid_keys() == set(VALID_KEYS)

    def test_frozen_after_init(self):
        registry = OpcodeRegistry()
        assert registry.is_frozen() is True
        with pytest.raises(RuntimeError):
            registry.register("OP_EXTRA", lambda state, ins: None)

    def test_singleton(self):
        assert get_registry() is get_registry()

    def test_unknown_key(self):
        with pytest.raises(KeyError):
            get_registry().execute(MachineState(), "OP_BOGUS", Instruction.from_opcode(0))

    def test_execute_handler(self):
        """execute runs the handler directly against the state."""
        state = MachineState()
        get_registry().execute(state, "OP_LD_IMM", Instruction.from_opcode(0x6533))
        assert state.registers[5] == 0x33
        # The registry itself does not advance PC
        assert state.pc == 0x200
