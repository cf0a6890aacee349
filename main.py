"""Capture once from a SUMP logic analyzer and print the decoded SPI traffic.

    python main.py --port /dev/ttyACM0 --rate 1000000 --samples 4096 \\
        --sck 0 --mosi 1 --miso 2 --cs 3 --honour-cs

Exit status is 0 on success, 1 on failure and 130 when interrupted.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable, Optional, Sequence, TextIO

from analysis.models import Annotation, DataWord, FramingEvent
from analysis.settings import BitOrder, ClockMode, SPIConfig, UNASSIGNED
from analysis.spi import SPIDecoder
from core.session import CaptureSession, ModeDetected
from core.tasks import TaskHandle, TaskOutcome, TaskState
from daq.logic_sniffer import LogicSnifferDevice
from daq.profiles import DeviceProfileRegistry
from shared.app_settings import AppSettings, AppSettingsStore
from shared.errors import ConfigurationError, TransportError, UnrecognizedDevice

logger = logging.getLogger("sumphound")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130

DeviceFactory = Callable[..., LogicSnifferDevice]


def build_parser() -> argparse.ArgumentParser:
    defaults = AppSettings()
    parser = argparse.ArgumentParser(
        prog="sumphound",
        description="Capture from a SUMP-compatible logic analyzer and decode SPI.",
    )
    parser.add_argument("--list-ports", action="store_true", help="list serial ports and exit")
    parser.add_argument("--port", help="serial port of the analyzer")
    parser.add_argument("--baud", type=int, default=None, help="serial baudrate")
    parser.add_argument("--profile", default=defaults.device_profile, help="device profile type")
    parser.add_argument("--strict", action="store_true", help="refuse devices with an unknown id")
    parser.add_argument("--idle-timeout", type=float, default=None,
                        help="give up after this many seconds without data")
    parser.add_argument("--log-level", default=defaults.log_level,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])

    capture = parser.add_argument_group("capture")
    capture.add_argument("--rate", type=int, default=defaults.sample_rate, help="sample rate in Hz")
    capture.add_argument("--samples", type=int, default=defaults.sample_count, help="samples to capture")
    capture.add_argument("--groups", type=lambda s: int(s, 0), default=defaults.group_mask,
                         help="enabled channel-group bitmask, e.g. 0x3")
    capture.add_argument("--ratio", type=float, default=defaults.trigger_ratio,
                         help="fraction of samples captured after the trigger")
    capture.add_argument("--trigger-mask", type=lambda s: int(s, 0), default=None)
    capture.add_argument("--trigger-value", type=lambda s: int(s, 0), default=0)
    capture.add_argument("--noise-filter", action="store_true")

    spi = parser.add_argument_group("SPI")
    spi.add_argument("--sck", type=int, default=None, help="clock channel")
    spi.add_argument("--mosi", type=int, default=UNASSIGNED, help="data-out channel")
    spi.add_argument("--miso", type=int, default=UNASSIGNED, help="data-in channel")
    spi.add_argument("--cs", type=int, default=UNASSIGNED, help="chip-select channel")
    spi.add_argument("--mode", default=ClockMode.MODE_0.value, choices=[m.value for m in ClockMode])
    spi.add_argument("--bits", type=int, default=8)
    spi.add_argument("--order", default=BitOrder.MSB_FIRST.value, choices=[o.value for o in BitOrder])
    spi.add_argument("--honour-cs", action="store_true", help="frame words with /CS")
    spi.add_argument("--report-cs", action="store_true", help="report /CS transitions")
    return parser


def format_annotation(annotation: Annotation) -> str:
    payload = annotation.payload
    span = f"{annotation.start_sample_index:>8}-{annotation.end_sample_index:<8}"
    if isinstance(payload, FramingEvent):
        return f"{span} {payload.name}"
    assert isinstance(payload, DataWord)
    digits = (payload.bit_count + 3) // 4
    return f"{span} {payload.line.name:<4} 0x{payload.value:0{digits}X}"


def list_ports(out: TextIO) -> int:
    try:
        devices = LogicSnifferDevice.list_available_devices()
    except RuntimeError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    for info in devices:
        marker = "*" if info.details.get("likely_sump") else " "
        print(f"{marker} {info.id}\t{info.name}", file=out)
    return EXIT_OK


def _wait(handle: TaskHandle) -> TaskOutcome:
    try:
        outcome = handle.wait()
    except KeyboardInterrupt:
        logger.warning("Interrupted; cancelling %s", handle.kind)
        handle.cancel()
        outcome = handle.wait(timeout=5.0)
        if outcome is None:
            outcome = TaskOutcome(handle.kind, TaskState.CANCELLED)
    assert outcome is not None
    return outcome


def _exit_code(outcome: TaskOutcome) -> Optional[int]:
    if outcome.state is TaskState.CANCELLED:
        return EXIT_CANCELLED
    if outcome.state is TaskState.FAILED:
        logger.error("%s failed: %s", outcome.kind, outcome.error)
        return EXIT_FAILURE
    return None


def run(
    args: argparse.Namespace,
    *,
    out: TextIO = sys.stdout,
    device_factory: DeviceFactory = LogicSnifferDevice,
    settings_store: Optional[AppSettingsStore] = None,
) -> int:
    if args.list_ports:
        return list_ports(out)

    store = settings_store or AppSettingsStore()
    try:
        app = store.update(
            serial_port=args.port or store.get().serial_port,
            baudrate=args.baud or store.get().baudrate,
            device_profile=args.profile,
            strict_identification=args.strict,
            sample_rate=args.rate,
            sample_count=args.samples,
            group_mask=args.groups,
            trigger_ratio=args.ratio,
            noise_filter=args.noise_filter,
            log_level=args.log_level,
        )
    except ValueError as exc:
        logger.error("Invalid option: %s", exc)
        return EXIT_FAILURE
    if not app.serial_port:
        logger.error("No serial port given (use --port, or --list-ports to find one)")
        return EXIT_FAILURE
    if args.sck is None:
        logger.error("No clock channel given (--sck)")
        return EXIT_FAILURE

    profiles = DeviceProfileRegistry.with_defaults()
    profile = profiles.get_profile(app.device_profile)
    if profile is None:
        logger.error("Unknown device profile %r (known: %s)", app.device_profile, ", ".join(profiles.profile_types()))
        return EXIT_FAILURE

    try:
        spi_config = SPIConfig(
            clock=args.sck,
            mosi=args.mosi,
            miso=args.miso,
            cs=args.cs,
            bit_count=args.bits,
            bit_order=BitOrder(args.order),
            mode=ClockMode(args.mode),
            honour_cs=args.honour_cs,
            report_cs=args.report_cs,
        )
        decoder = SPIDecoder(spi_config)
        trigger = {}
        if args.trigger_mask is not None:
            trigger = dict(trigger_enabled=True, trigger_mask=args.trigger_mask, trigger_value=args.trigger_value)
        capture_settings = app.capture_settings(**trigger)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_FAILURE

    device = device_factory(
        profile,
        baudrate=app.baudrate,
        strict_identification=app.strict_identification,
        idle_timeout=args.idle_timeout,
    )
    session = CaptureSession(device, profiles=profiles, settings_store=store)
    try:
        session.open(app.serial_port)
        handle = session.start_capture(capture_settings)
        code = _exit_code(_wait(handle))
        if code is not None:
            return code

        def on_event(kind: str, event: object) -> None:
            if isinstance(event, ModeDetected):
                logger.info("Detected %s", event.mode.label)

        handle = session.start_decode(decoder, on_event=on_event)
        outcome = _wait(handle)
        code = _exit_code(outcome)
        if code is not None:
            return code
        for annotation in outcome.value:
            print(format_annotation(annotation), file=out)
        return EXIT_OK
    except (ConfigurationError, TransportError, UnrecognizedDevice) as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_CANCELLED
    finally:
        session.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
