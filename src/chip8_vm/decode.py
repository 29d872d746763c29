"""Instruction decoder for the CHIP-8 base instruction set.

Architecture:
    16-bit word -> Instruction fields -> (operation key, mnemonic) -> Registry

Every word decodes to exactly one registry key. The high nibble selects the
instruction family; families 0x0, 0x8, 0xE and 0xF dispatch further on the
low byte or low nibble. Words with no assigned meaning inside a family decode
to ``OP_NOP`` with ``known=False`` so they only consume the default PC advance.

Field names follow the classic technical reference:
    nnn - lowest 12 bits (address)
    n   - lowest 4 bits (nibble)
    x   - low nibble of the high byte (register selector)
    y   - high nibble of the low byte (register selector)
    kk  - lowest 8 bits (immediate byte)
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Tuple


@dataclass(frozen=True)
class Instruction:
    """Decoded fields of one instruction word.

    Attributes:
        opcode: Raw 16-bit word
        nnn: 12-bit address
        n: 4-bit nibble
        x: Register selector from bits 8-11
        y: Register selector from bits 4-7
        kk: 8-bit immediate
    """
    opcode: int
    nnn: int
    n: int
    x: int
    y: int
    kk: int

    @classmethod
    def from_opcode(cls, opcode: int) -> "Instruction":
        return cls(
            opcode=opcode,
            nnn=opcode & 0x0FFF,
            n=opcode & 0x000F,
            x=(opcode & 0x0F00) >> 8,
            y=(opcode & 0x00F0) >> 4,
            kk=opcode & 0x00FF,
        )

    @property
    def family(self) -> int:
        return (self.opcode & 0xF000) >> 12


@dataclass
class DecodeResult:
    """Result of decoding one word.

    Attributes:
        key: Registry key (e.g., "OP_DRW")
        instruction: Decoded fields
        mnemonic: Assembly rendering (e.g., "DRW V0, V1, 5")
        known: False when the word has no assigned meaning
    """
    key: str
    instruction: Instruction
    mnemonic: str
    known: bool = True


# Families selected by the high nibble alone
_FAMILY_KEYS: Dict[int, str] = {
    0x1: "OP_JP",
    0x2: "OP_CALL",
    0x3: "OP_SE_IMM",
    0x4: "OP_SNE_IMM",
    0x6: "OP_LD_IMM",
    0x7: "OP_ADD_IMM",
    0xA: "OP_LD_I",
    0xB: "OP_JP_V0",
    0xC: "OP_RND",
    0xD: "OP_DRW",
}

# 8xyN, keyed by the low nibble
_ALU_KEYS: Dict[int, str] = {
    0x0: "OP_LD_REG",
    0x1: "OP_OR",
    0x2: "OP_AND",
    0x3: "OP_XOR",
    0x4: "OP_ADD_REG",
    0x5: "OP_SUB",
    0x6: "OP_SHR",
    0x7: "OP_SUBN",
    0xE: "OP_SHL",
}

# ExKK, keyed by the low byte
_KEY_KEYS: Dict[int, str] = {
    0x9E: "OP_SKP",
    0xA1: "OP_SKNP",
}

# FxKK, keyed by the low byte
_MISC_KEYS: Dict[int, str] = {
    0x07: "OP_LD_VX_DT",
    0x0A: "OP_LD_VX_K",
    0x15: "OP_LD_DT_VX",
    0x18: "OP_LD_ST_VX",
    0x1E: "OP_ADD_I_VX",
    0x29: "OP_LD_F_VX",
    0x33: "OP_LD_B_VX",
    0x55: "OP_LD_MEM_VX",
    0x65: "OP_LD_VX_MEM",
}

MNEMONICS: Dict[str, str] = {
    "OP_CLS": "CLS",
    "OP_RET": "RET",
    "OP_SYS": "SYS 0x{nnn:03X}",
    "OP_JP": "JP 0x{nnn:03X}",
    "OP_CALL": "CALL 0x{nnn:03X}",
    "OP_SE_IMM": "SE V{x:X}, 0x{kk:02X}",
    "OP_SNE_IMM": "SNE V{x:X}, 0x{kk:02X}",
    "OP_SE_REG": "SE V{x:X}, V{y:X}",
    "OP_LD_IMM": "LD V{x:X}, 0x{kk:02X}",
    "OP_ADD_IMM": "ADD V{x:X}, 0x{kk:02X}",
    "OP_LD_REG": "LD V{x:X}, V{y:X}",
    "OP_OR": "OR V{x:X}, V{y:X}",
    "OP_AND": "AND V{x:X}, V{y:X}",
    "OP_XOR": "XOR V{x:X}, V{y:X}",
    "OP_ADD_REG": "ADD V{x:X}, V{y:X}",
    "OP_SUB": "SUB V{x:X}, V{y:X}",
    "OP_SHR": "SHR V{x:X}",
    "OP_SUBN": "SUBN V{x:X}, V{y:X}",
    "OP_SHL": "SHL V{x:X}",
    "OP_SNE_REG": "SNE V{x:X}, V{y:X}",
    "OP_LD_I": "LD I, 0x{nnn:03X}",
    "OP_JP_V0": "JP V0, 0x{nnn:03X}",
    "OP_RND": "RND V{x:X}, 0x{kk:02X}",
    "OP_DRW": "DRW V{x:X}, V{y:X}, {n}",
    "OP_SKP": "SKP V{x:X}",
    "OP_SKNP": "SKNP V{x:X}",
    "OP_LD_VX_DT": "LD V{x:X}, DT",
    "OP_LD_VX_K": "LD V{x:X}, K",
    "OP_LD_DT_VX": "LD DT, V{x:X}",
    "OP_LD_ST_VX": "LD ST, V{x:X}",
    "OP_ADD_I_VX": "ADD I, V{x:X}",
    "OP_LD_F_VX": "LD F, V{x:X}",
    "OP_LD_B_VX": "LD B, V{x:X}",
    "OP_LD_MEM_VX": "LD [I], V{x:X}",
    "OP_LD_VX_MEM": "LD V{x:X}, [I]",
    "OP_NOP": "DW 0x{opcode:04X}",
}

VALID_KEYS = frozenset(MNEMONICS)


def _lookup_key(ins: Instruction) -> str:
    family = ins.family

    if family in _FAMILY_KEYS:
        return _FAMILY_KEYS[family]

    if family == 0x0:
        if ins.opcode == 0x00E0:
            return "OP_CLS"
        if ins.opcode == 0x00EE:
            return "OP_RET"
        return "OP_SYS"

    if family == 0x5 and ins.n == 0:
        return "OP_SE_REG"
    if family == 0x9 and ins.n == 0:
        return "OP_SNE_REG"
    if family == 0x8:
        return _ALU_KEYS.get(ins.n, "OP_NOP")
    if family == 0xE:
        return _KEY_KEYS.get(ins.kk, "OP_NOP")
    if family == 0xF:
        return _MISC_KEYS.get(ins.kk, "OP_NOP")

    return "OP_NOP"


def decode(opcode: int) -> DecodeResult:
    """Decode a 16-bit instruction word.

    Args:
        opcode: Instruction word, most significant byte first

    Returns:
        DecodeResult with registry key, fields and mnemonic
    """
    ins = Instruction.from_opcode(opcode & 0xFFFF)
    key = _lookup_key(ins)
    mnemonic = MNEMONICS[key].format(
        opcode=ins.opcode, nnn=ins.nnn, n=ins.n, x=ins.x, y=ins.y, kk=ins.kk
    )
    return DecodeResult(key, ins, mnemonic, known=key != "OP_NOP")


def disassemble(data: bytes, start: int = 0x200) -> List[Tuple[int, int, str]]:
    """Disassemble a byte string into (address, word, mnemonic) rows.

    A trailing odd byte is rendered as a ``DB`` directive.
    """
    rows = []
    for offset in range(0, len(data) - 1, 2):
        word = (data[offset] << 8) | data[offset + 1]
        rows.append((start + offset, word, decode(word).mnemonic))
    if len(data) % 2:
        last = data[-1]
        rows.append((start + len(data) - 1, last, f"DB 0x{last:02X}"))
    return rows


def parse_hex_program(source: str) -> bytes:
    """Parse a hex listing into ROM bytes.

    Handles:
        - Whitespace- or comma-separated hex tokens ("6A02 FA29, D001")
        - Optional 0x prefixes
        - Comments (starting with ; or #)

    Args:
        source: Listing text

    Returns:
        ROM bytes in listing order

    Raises:
        ValueError: If a token is not hex or has an odd number of digits
    """
    rom = bytearray()

    for line in source.split("\n"):
        line = re.sub(r'[;#].*$', '', line).strip()
        if not line:
            continue

        for token in re.split(r'[\s,]+', line):
            digits = token[2:] if token.lower().startswith("0x") else token
            if not digits or len(digits) % 2 or not re.fullmatch(r'[0-9A-Fa-f]+', digits):
                raise ValueError(f"Invalid hex token: {token!r}")
            rom.extend(bytes.fromhex(digits))

    return bytes(rom)
