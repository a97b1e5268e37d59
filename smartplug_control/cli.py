"""Command-line interface for smartplug-control."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .config import ControlConfig, load_config, with_broker_overrides, with_device_type
from .controller import DeviceController, format_power
from .core.models import OperationResult, OtaProgress, PowerReading
from .errors import ValidationError
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)

MONITOR_POWER = "power"
MONITOR_STATE = "state"


def _add_device_arguments(parser: argparse.ArgumentParser, *, device_type: bool = True) -> None:
    parser.add_argument("--mac", required=True, help="Device mac address")
    if device_type:
        parser.add_argument(
            "--device",
            default=None,
            help=f"Device type (default: {constants.DEFAULT_DEVICE_TYPE})",
        )


def _add_broker_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--uri", default=None, help="MQTT broker host")
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help=f"MQTT broker port, optional (default: {constants.DEFAULT_BROKER_PORT})",
    )
    parser.add_argument("--username", default=None, help="MQTT username, optional")
    parser.add_argument("--password", default=None, help="MQTT password, optional")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=constants.APP_NAME, description="Discover, provision and control smart plugs"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("discover", help="Ask device to report itself")

    adopt_parser = subparsers.add_parser(
        "adopt", help="Send local MQTT server information to device"
    )
    _add_device_arguments(adopt_parser, device_type=False)
    _add_broker_arguments(adopt_parser)

    activate_parser = subparsers.add_parser(
        "activate",
        help="Activate device by given code, it requires the device has been adopted",
    )
    _add_device_arguments(activate_parser)
    activate_parser.add_argument("--code", required=True, help="Activate code")
    _add_broker_arguments(activate_parser)

    monitor_parser = subparsers.add_parser(
        "monitor", help="Monitor device status (power and uptime, or plug state)"
    )
    _add_device_arguments(monitor_parser)
    monitor_parser.add_argument(
        "--monitor",
        choices=(MONITOR_POWER, MONITOR_STATE),
        default=MONITOR_STATE,
        help="Monitor type, could be either power or state",
    )
    _add_broker_arguments(monitor_parser)

    switch_parser = subparsers.add_parser("switch", help="Switch a specific plug on/off")
    _add_device_arguments(switch_parser)
    switch_parser.add_argument(
        "--plug", type=int, default=0, help=f"Plug index (0-{constants.PLUG_COUNT - 1})"
    )
    switch_parser.add_argument(
        "--on",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Plug on/off",
    )
    _add_broker_arguments(switch_parser)

    upgrade_parser = subparsers.add_parser(
        "upgrade", help="Upgrade device to a certain firmware"
    )
    _add_device_arguments(upgrade_parser)
    upgrade_parser.add_argument("--ota", required=True, help="OTA address")
    _add_broker_arguments(upgrade_parser)

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def _resolve_config(args: argparse.Namespace) -> ControlConfig:
    config = load_config(args.config)
    config = with_broker_overrides(
        config,
        host=getattr(args, "uri", None),
        port=getattr(args, "port", None),
        username=getattr(args, "username", None),
        password=getattr(args, "password", None),
    )
    return with_device_type(config, getattr(args, "device", None))


def _report(result: OperationResult) -> int:
    stream = sys.stdout if result.ok else sys.stderr
    print(result.message, file=stream)
    return 0 if result.ok else 1


async def _run(controller: DeviceController, args: argparse.Namespace) -> int:
    command = args.command

    if command == "discover":
        print("Broadcast to the local area network, wait for device to report.")

        def _tick() -> None:
            print(".", end="", flush=True)

        result = await controller.discover(on_tick=_tick)
        print()
        return _report(result)

    if command == "adopt":
        return _report(await controller.adopt(args.mac))

    if command == "activate":
        return _report(await controller.activate(args.mac, args.code))

    if command == "monitor":
        if args.monitor == MONITOR_POWER:

            def _print_reading(reading: PowerReading) -> None:
                print(format_power(reading), flush=True)

            return _report(await controller.monitor_power(args.mac, _print_reading))
        return _report(await controller.monitor_state(args.mac))

    if command == "switch":
        return _report(await controller.switch_plug(args.mac, args.plug, args.on))

    if command == "upgrade":

        def _print_progress(progress: OtaProgress) -> None:
            print(f"Upgrade progress: {progress.percent:g}%", flush=True)

        return _report(
            await controller.upgrade(args.mac, args.ota, on_progress=_print_progress)
        )

    LOGGER.error("Unknown command: %s", command)
    return 1


def _show_config(config: ControlConfig) -> int:
    print(f"Configuration loaded from {config.path!s}\n")
    for section in config.raw.sections():
        print(f"[{section}]")
        for key, value in config.raw[section].items():
            if key == "password" and value:
                value = "********"
            print(f"{key} = {value}")
        print()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = _resolve_config(args)
    configure_logging(
        "DEBUG" if args.verbose else config.logging.level,
        log_path=config.logging.path,
        log_network=config.logging.log_network,
    )

    if args.command == "show-config":
        return _show_config(config)

    if args.command == "switch" and not 0 <= args.plug < constants.PLUG_COUNT:
        print(
            f"Plug index value should be between 0 and {constants.PLUG_COUNT - 1}",
            file=sys.stderr,
        )
        return 1

    controller = DeviceController(config)
    try:
        return asyncio.run(_run(controller, args))
    except ValidationError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        LOGGER.info("%s interrupted", args.command)
        return 0 if args.command == "monitor" else 1


if __name__ == "__main__":
    sys.exit(main())
