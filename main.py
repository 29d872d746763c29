#!/usr/bin/env python3
"""CHIP-8 VM Command Line Interface.

Run CHIP-8 programs headless and print the resulting screen.

Usage:
    python main.py --rom roms/ibm_logo.ch8 --cycles 500
    python main.py --hex "6A02 FA29 D001" --cycles 3 --trace
"""

import argparse
import logging
import random
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from chip8_vm import Chip8CPU, Chip8Error, disassemble, parse_hex_program


def main():
    parser = argparse.ArgumentParser(
        description="CHIP-8 VM: headless CHIP-8 interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run a ROM for 1000 cycles, ticking timers every 10 cycles
    python main.py --rom roms/pong.ch8 --cycles 1000

    # Run an inline hex listing with full trace output
    python main.py --hex "6A02 FA29 D001" --cycles 3 --trace

    # Hold keys 5 and 0xA down for the whole run
    python main.py --rom roms/keypad.ch8 --key 5 --key A

    # Print a disassembly instead of running
    python main.py --rom roms/pong.ch8 --disassemble
        """
    )

    parser.add_argument(
        "--rom", "-r",
        type=str,
        help="Path to a CHIP-8 ROM file"
    )
    parser.add_argument(
        "--hex",
        type=str,
        help="Inline hex listing (e.g. \"6A02 FA29 D001\")"
    )
    parser.add_argument(
        "--cycles", "-c",
        type=int,
        default=1000,
        help="Number of cycles to execute. Default: 1000"
    )
    parser.add_argument(
        "--cycles-per-tick",
        type=int,
        default=10,
        help="Cycles between 60 Hz timer ticks. Default: 10 (~600 Hz)"
    )
    parser.add_argument(
        "--key", "-k",
        action="append",
        default=[],
        help="Hex key (0-F) held down for the whole run; repeatable"
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for the RND instruction"
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Print full execution trace"
    )
    parser.add_argument(
        "--disassemble", "-d",
        action="store_true",
        help="Print a disassembly listing and exit"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (screen only)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    # Validate arguments
    if not args.rom and not args.hex:
        parser.error("Either --rom or --hex is required")

    try:
        keys = [int(k, 16) for k in args.key]
    except ValueError:
        parser.error(f"--key expects hex digits 0-F, got {args.key}")

    if args.cycles_per_tick <= 0:
        parser.error(f"--cycles-per-tick must be positive, got {args.cycles_per_tick}")

    # Load program bytes
    if args.rom:
        rom_path = Path(args.rom)
        if not rom_path.exists():
            print(f"Error: ROM file not found: {args.rom}")
            return 1
        rom = rom_path.read_bytes()
        if not args.quiet:
            print(f"Loading ROM: {args.rom} ({len(rom)} bytes)")
    else:
        try:
            rom = parse_hex_program(args.hex)
        except ValueError as e:
            print(f"Error: {e}")
            return 1
        if not args.quiet:
            print(f"Running inline program ({len(rom)} bytes)")

    if args.disassemble:
        for address, word, mnemonic in disassemble(rom):
            print(f"{address:03X}: {word:04X}  {mnemonic}")
        return 0

    rng = random.Random(args.seed) if args.seed is not None else None
    cpu = Chip8CPU(rng=rng, trace=args.trace)

    try:
        cpu.load_rom(rom)
        for key in keys:
            cpu.key_down(key)
    except Chip8Error as e:
        print(f"Error: {e}")
        return 1

    # Run
    if not args.quiet:
        print("-" * 64)
        print("Executing...")
        print("-" * 64)

    fault = None
    try:
        cpu.run(args.cycles, cycles_per_tick=args.cycles_per_tick)
    except Chip8Error as e:
        fault = e
        print(f"Execution fault: {e}")

    # Output
    if args.trace:
        cpu.print_trace()
    elif not args.quiet:
        summary = cpu.get_summary()
        print(f"Cycles: {summary['cycles']}")
        print(f"PC: 0x{summary['pc']:03X}  I: 0x{summary['I']:03X}  SP: {summary['sp']}")
        print(f"DT: {summary['DT']}  ST: {summary['ST']}  Sound: {'on' if summary['sound_active'] else 'off'}")
        print(f"Registers: {' '.join(f'{k}={v:02X}' for k, v in summary['registers'].items())}")
        if summary['waiting_for_key']:
            print("Waiting for key press")

    print(cpu.state.display.to_text())

    return 1 if fault else 0


if __name__ == "__main__":
    sys.exit(main())
