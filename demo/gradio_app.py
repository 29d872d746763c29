"""CHIP-8 VM Interactive Demo.

A Gradio web interface for running CHIP-8 programs and viewing the screen.

Usage:
    cd /path/to/chip8-vm
    python demo/gradio_app.py

Features:
    - Run built-in hex listings or upload a ROM file
    - Hold keypad keys down for the whole run
    - See the 64x32 framebuffer scaled up as an image
    - Inspect final registers and a step-by-step trace
"""

import random
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import gradio as gr
import numpy as np
from chip8_vm import Chip8CPU, Chip8Error, parse_hex_program


# =============================================================================
# Example Programs
# =============================================================================

EXAMPLE_PROGRAMS = {
    "Digit 2": """6A02    ; LD VA, 2
FA29    ; LD F, VA
6000    ; LD V0, 0
6100    ; LD V1, 0
D015    ; DRW V0, V1, 5
120A    ; JP 0x20A (halt loop)
""",
    "Hex font": """6000    ; LD V0, 0      digit
6101    ; LD V1, 1      x
6201    ; LD V2, 1      y
F029    ; 206: LD F, V0
D125    ; DRW V1, V2, 5
7001    ; ADD V0, 1
7108    ; ADD V1, 8
4008    ; SNE V0, 8
2220    ; CALL 0x220    second row
3010    ; SE V0, 0x10
1206    ; JP 0x206
1216    ; JP 0x216 (halt loop)
0000 0000 0000 0000
6101    ; 220: LD V1, 1
6208    ; LD V2, 8
00EE    ; RET
""",
    "BCD 123": """6A7B    ; LD VA, 123
A300    ; LD I, 0x300
FA33    ; LD B, VA
F265    ; LD V2, [I]
6314    ; LD V3, 20
640D    ; LD V4, 13
F029    ; LD F, V0
D345    ; DRW V3, V4, 5
7306    ; ADD V3, 6
F129    ; LD F, V1
D345    ; DRW V3, V4, 5
7306    ; ADD V3, 6
F229    ; LD F, V2
D345    ; DRW V3, V4, 5
121C    ; JP 0x21C (halt loop)
""",
    "Wait for key": """F00A    ; LD V0, K      (hold a key below)
F029    ; LD F, V0
611C    ; LD V1, 28
620D    ; LD V2, 13
D125    ; DRW V1, V2, 5
120A    ; JP 0x20A (halt loop)
""",
}

SCALE = 8
ON_COLOR = np.array([0x00, 0xFF, 0xFF], dtype=np.uint8)
OFF_COLOR = np.array([0x33, 0x33, 0x33], dtype=np.uint8)
KEY_CHOICES = [f"{k:X}" for k in range(16)]


def render_screen(pixels: np.ndarray) -> np.ndarray:
    """Scale a (32, 64) 0/1 framebuffer to an RGB image."""
    rgb = np.where(pixels[..., None] == 1, ON_COLOR, OFF_COLOR).astype(np.uint8)
    return np.repeat(np.repeat(rgb, SCALE, axis=0), SCALE, axis=1)


# =============================================================================
# Execution
# =============================================================================

def run_program(program: str, rom_file, cycles: int, seed, held_keys: list) -> tuple:
    """Execute a program and return results.

    Args:
        program: Hex listing (used when no ROM is uploaded)
        rom_file: Uploaded ROM bytes, or None
        cycles: Number of cycles to execute
        seed: RND seed, or None for unseeded
        held_keys: Hex digits of keys held down

    Returns:
        Tuple of (screen_image, summary_text, trace_text, registers_text)
    """
    try:
        rom = bytes(rom_file) if rom_file is not None else parse_hex_program(program)
    except ValueError as e:
        return None, f"Error: {e}", "", ""
    if not rom:
        return None, "Error: No program provided", "", ""

    rng = random.Random(int(seed)) if seed is not None else None
    cpu = Chip8CPU(rng=rng, trace=True, max_trace=200)

    try:
        cpu.load_rom(rom)
        for key in held_keys or []:
            cpu.key_down(int(key, 16))
    except Chip8Error as e:
        return None, f"Error: {e}", "", ""

    fault = None
    try:
        cpu.run(int(cycles), cycles_per_tick=10)
    except Chip8Error as e:
        fault = str(e)

    # Format summary
    summary = cpu.get_summary()
    summary_lines = [
        "EXECUTION SUMMARY",
        "=" * 40,
        f"Cycles: {summary['cycles']}",
        f"Halted: {'Yes' if summary['halted'] else 'No'}",
        f"Waiting for key: {'Yes' if summary['waiting_for_key'] else 'No'}",
        f"Lit pixels: {summary['lit_pixels']}",
        f"Sound: {'on' if summary['sound_active'] else 'off'}",
    ]
    if fault:
        summary_lines.append(f"\nFault: {fault}")
    summary_text = "\n".join(summary_lines)

    # Format trace
    trace = cpu.get_trace()
    trace_lines = [
        "EXECUTION TRACE (most recent)",
        "=" * 60,
    ]
    for entry in trace[-100:]:
        word = f"{entry.opcode:04X}" if entry.opcode is not None else "----"
        line = f"[{entry.cycle:>6}] {entry.address:03X}: {word}  {entry.mnemonic}"
        if entry.error:
            line += f"  FAULT: {entry.error}"
        trace_lines.append(line)
    trace_text = "\n".join(trace_lines)

    # Format registers
    reg_lines = [
        "FINAL REGISTERS",
        "=" * 30,
    ]
    for reg, value in summary["registers"].items():
        marker = " *" if value != 0 else ""
        reg_lines.append(f"  {reg}: 0x{value:02X} ({value:>3}){marker}")
    reg_lines.append("")
    reg_lines.append(f"  I:  0x{summary['I']:03X}")
    reg_lines.append(f"  PC: 0x{summary['pc']:03X}")
    reg_lines.append(f"  SP: {summary['sp']}")
    reg_lines.append(f"  DT: {summary['DT']}  ST: {summary['ST']}")
    registers_text = "\n".join(reg_lines)

    return render_screen(cpu.framebuffer()), summary_text, trace_text, registers_text


def load_example(example_name: str) -> str:
    """Load an example program."""
    return EXAMPLE_PROGRAMS.get(example_name, "")


# =============================================================================
# Gradio Interface
# =============================================================================

def create_demo():
    """Create and return the Gradio demo interface."""

    with gr.Blocks(title="CHIP-8 VM Demo", theme=gr.themes.Soft()) as demo:
        gr.Markdown("""
        # CHIP-8 VM

        Run CHIP-8 programs headless and inspect the resulting screen.

        **Pipeline**: `fetch -> decode -> key -> handler -> state`
        """)

        with gr.Row():
            with gr.Column(scale=2):
                gr.Markdown("### Program")

                example_dropdown = gr.Dropdown(
                    choices=list(EXAMPLE_PROGRAMS.keys()),
                    value="Digit 2",
                    label="Load Example"
                )

                program_input = gr.Textbox(
                    value=EXAMPLE_PROGRAMS["Digit 2"],
                    label="Hex Listing",
                    lines=15,
                    placeholder="6A02 FA29 D001 ; comments after ; or #"
                )

                rom_input = gr.File(
                    label="Or upload a ROM (overrides the listing)",
                    type="binary"
                )

                gr.Markdown("### Settings")

                with gr.Row():
                    cycles = gr.Slider(
                        minimum=1,
                        maximum=20000,
                        value=500,
                        step=1,
                        label="Cycles"
                    )
                    seed = gr.Number(
                        value=None,
                        precision=0,
                        label="RND Seed (optional)"
                    )

                held_keys = gr.CheckboxGroup(
                    choices=KEY_CHOICES,
                    label="Keys held down"
                )

                run_button = gr.Button("Run Program", variant="primary")

            with gr.Column(scale=3):
                screen_output = gr.Image(
                    label="Screen",
                    interactive=False
                )
                with gr.Row():
                    summary_output = gr.Textbox(
                        label="Summary",
                        lines=10,
                        interactive=False
                    )
                    registers_output = gr.Textbox(
                        label="Final Registers",
                        lines=10,
                        interactive=False
                    )

                trace_output = gr.Textbox(
                    label="Execution Trace",
                    lines=20,
                    interactive=False
                )

        with gr.Accordion("Instruction Reference", open=False):
            gr.Markdown("""
            | Word | Mnemonic | Effect |
            |------|----------|--------|
            | `00E0` | `CLS` | Clear screen |
            | `00EE` | `RET` | Return from subroutine |
            | `1nnn` | `JP nnn` | Jump |
            | `2nnn` | `CALL nnn` | Call subroutine |
            | `3xkk` / `4xkk` | `SE` / `SNE Vx, kk` | Skip if equal / not equal |
            | `5xy0` / `9xy0` | `SE` / `SNE Vx, Vy` | Skip if equal / not equal |
            | `6xkk` / `7xkk` | `LD` / `ADD Vx, kk` | Load / add immediate |
            | `8xy0`-`8xyE` | ALU | LD OR AND XOR ADD SUB SHR SUBN SHL |
            | `Annn` | `LD I, nnn` | Set I |
            | `Bnnn` | `JP V0, nnn` | Jump to V0 + nnn |
            | `Cxkk` | `RND Vx, kk` | Random byte AND kk |
            | `Dxyn` | `DRW Vx, Vy, n` | Draw sprite, VF = collision |
            | `Ex9E` / `ExA1` | `SKP` / `SKNP Vx` | Skip on key state |
            | `Fx07` / `Fx0A` | `LD Vx, DT` / `LD Vx, K` | Read timer / wait for key |
            | `Fx15` / `Fx18` | `LD DT` / `ST, Vx` | Set timers |
            | `Fx1E` / `Fx29` | `ADD I, Vx` / `LD F, Vx` | Adjust I / font glyph |
            | `Fx33` / `Fx55` / `Fx65` | `LD B` / `[I]` | BCD, store, load registers |
            """)

        # Event handlers
        example_dropdown.change(
            fn=load_example,
            inputs=[example_dropdown],
            outputs=[program_input]
        )

        run_button.click(
            fn=run_program,
            inputs=[program_input, rom_input, cycles, seed, held_keys],
            outputs=[screen_output, summary_output, trace_output, registers_output]
        )

    return demo


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    demo = create_demo()
    demo.launch(
        share=False,
        server_name="0.0.0.0",
        server_port=7861,
        show_error=True
    )
