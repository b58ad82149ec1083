#!/usr/bin/env python3
"""
Kiosk capture runbook: one capture session against the device or the simulator.
Prints live progress, then the committed vitals; optionally saves a visit.

Usage:
    python run_capture.py --port /dev/ttyUSB0 --baud 9600
    python run_capture.py --simulate --seed 7 --window 5 --save visits.json
"""

import argparse
import logging
import sys
import time

from data_store import VisitStore
from vitals_engine import VitalsEngine, protocol
from vitals_engine.errors import VitalsEngineError
from vitals_engine.models import Channel, SerialSettings

POLL_INTERVAL_S = 0.1


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one vitals capture session")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--port", help="Serial port of the bedside device")
    source.add_argument("--simulate", action="store_true", help="Use the built-in simulator")
    parser.add_argument("--baud", type=int, default=protocol.DEFAULT_BAUD, help="Baud rate")
    parser.add_argument("--seed", type=int, default=None, help="Simulator seed")
    parser.add_argument(
        "--window", type=float, default=protocol.CAPTURE_WINDOW_S, help="Capture window in seconds"
    )
    parser.add_argument("--save", metavar="PATH", help="Append the committed vitals to this JSON file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    print("=" * 70)
    print("Vitals capture session")
    print("=" * 70)
    print(f"Source: {'simulator' if args.simulate else f'{args.port} @ {args.baud}'}")
    print(f"Window: {args.window}s")
    print()

    engine = VitalsEngine(window_s=args.window)

    try:
        print("[1/3] Opening source...")
        if args.simulate:
            engine.start_simulation(seed=args.seed)
        else:
            engine.connect(settings=SerialSettings(port=args.port, baud=args.baud))
        print(f"      Source: {engine.source_state.value}")
        print()

        print("[2/3] Capturing...")
        engine.start_capture()
        while not engine.poll_capture():
            time.sleep(POLL_INTERVAL_S)
            session = engine.session
            counts = " ".join(
                f"{c.key}={len(session.samples(c))}" for c in Channel if session.samples(c)
            )
            print(f"      [{session.progress():5.1f}%] {counts}", end="\r")
        print()
        print()

        print("[3/3] Committed vitals:")
        vitals = engine.committed_vitals()
        for channel in Channel:
            value = vitals.get(channel.key)
            shown = "-" if value is None else f"{value} {channel.unit}".strip()
            print(f"      {channel.key:12} {shown}")
        print()

        if engine.session.is_complete():
            print("✓ All required vitals captured")
        else:
            print("✗ Missing required vitals")

        if args.save:
            if vitals:
                record = VisitStore(path=args.save).save_vitals(vitals)
                print(f"Saved visit {record['id']} to {args.save}")
            else:
                print("Nothing committed, not saving")

        return 0 if engine.session.is_complete() else 1

    except (VitalsEngineError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    finally:
        engine.shutdown()
        print("=" * 70)


if __name__ == "__main__":
    sys.exit(main())
