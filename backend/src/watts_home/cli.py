"""
`watts-cli`: log in to Watts Home and drive thermostats from the shell.

This module is the composition root: it configures logging, builds the token
store, token manager, request executor and API client, and maps failures to
exit codes. Results are printed to stdout as JSON; logs go to stderr.

Exit codes:
- 0   success
- 2   authentication failure or invalid input
- 3   request failure (network, HTTP or API error)
- 130 interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from . import config as config_mod
from .api_auth.token_manager import TokenManager
from .api_auth.token_store import TokenStore
from .api_client.client import DEVICE_MODES, FAN_MODES, WattsApiClient
from .api_client.executor import RequestExecutor
from .errors import AuthError, RequestError
from .log_utils import configure_logging, sanitize_text


class _Runtime:
    """Wires the long-lived components for a single CLI invocation."""

    def __init__(self, args: argparse.Namespace, log: logging.LoggerAdapter) -> None:
        timeout = float(args.timeout_seconds) if args.timeout_seconds else config_mod.get_timeout_seconds()
        path = Path(args.token_path).expanduser() if args.token_path else None
        self.store = TokenStore(path, log=log)
        self.tokens = TokenManager(self.store, log=log, timeout_seconds=timeout)
        self.executor = RequestExecutor(self.tokens, log=log, timeout_seconds=timeout)
        self.api = WattsApiClient(self.executor)

    def close(self) -> None:
        self.executor.close()
        self.tokens.close()


def _iso(epoch_seconds: int) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


def _token_summary(rt: _Runtime, tokens: Any) -> dict:
    return {
        "token_path": str(rt.store.path),
        "expires_at": tokens.expires_at,
        "expires_at_iso": _iso(tokens.expires_at),
        "refresh_token_expires_at": tokens.refresh_token_expires_at,
    }


def _resolve_credentials(args: argparse.Namespace) -> tuple[str, str]:
    email = args.email or config_mod._get_env("WATTS_EMAIL")
    if not email:
        email = input("Email: ").strip()
    password = config_mod._get_env("WATTS_PASSWORD")
    if not password:
        password = getpass.getpass("Password: ")
    if not email or not password:
        raise ValueError("Email and password are required (use --email/WATTS_EMAIL and WATTS_PASSWORD).")
    return email, password


def _units(device: Any) -> Optional[str]:
    return (((device or {}).get("data") or {}).get("TempUnits") or {}).get("Val")


def _choice(value: str, allowed: tuple[str, ...], what: str) -> str:
    """Case-insensitive match against the API's capitalised enum values."""
    for option in allowed:
        if option.lower() == value.lower():
            return option
    raise ValueError(f"{what} must be one of: {', '.join(a.lower() for a in allowed)}")


# --- auth commands ---


async def _cmd_login(args: argparse.Namespace, rt: _Runtime) -> dict:
    email, password = _resolve_credentials(args)
    tokens = await rt.tokens.login(email, password)
    return {"status": "logged_in", **_token_summary(rt, tokens)}


async def _cmd_refresh(args: argparse.Namespace, rt: _Runtime) -> dict:
    tokens = await rt.tokens.refresh()
    return {"status": "refreshed", **_token_summary(rt, tokens)}


async def _cmd_logout(args: argparse.Namespace, rt: _Runtime) -> dict:
    removed = await rt.tokens.logout()
    return {"status": "logged_out", "removed": removed, "token_path": str(rt.store.path)}


# --- locations ---


async def _cmd_locations_list(args: argparse.Namespace, rt: _Runtime) -> list:
    locations = await rt.api.get_locations()
    return [
        {
            "locationId": loc.get("locationId"),
            "name": loc.get("name"),
            "devicesCount": loc.get("devicesCount"),
            "away": loc.get("awayState") == 1,
        }
        for loc in locations or []
    ]


async def _cmd_locations_away(args: argparse.Namespace, rt: _Runtime) -> dict:
    away = _choice(args.state, ("on", "off"), "Away state") == "on"
    location = await rt.api.set_location_away_mode(args.location_id, away)
    return {"locationId": args.location_id, "name": (location or {}).get("name"), "away": away}


# --- devices ---


async def _cmd_devices_list(args: argparse.Namespace, rt: _Runtime) -> list:
    devices = await rt.api.get_location_devices(args.location_id)
    return [
        {
            "deviceId": d.get("deviceId"),
            "name": d.get("name"),
            "deviceType": d.get("deviceType"),
            "modelNumber": d.get("modelNumber"),
        }
        for d in devices or []
    ]


async def _cmd_devices_status(args: argparse.Namespace, rt: _Runtime) -> dict:
    device = await rt.api.get_device(args.device_id)
    data = device.get("data") or {}
    sensors = data.get("Sensors") or {}
    target = data.get("Target") or {}
    status = {
        "deviceId": device.get("deviceId", args.device_id),
        "name": device.get("name"),
        "connected": bool(device.get("isConnected")),
        "mode": (data.get("Mode") or {}).get("Val"),
        "state": (data.get("State") or {}).get("Op"),
        "units": _units(device),
        "roomTemp": (sensors.get("Room") or {}).get("Val"),
        "heatSetpoint": target.get("Heat"),
        "coolSetpoint": target.get("Cool"),
        "fan": (data.get("Fan") or {}).get("Val"),
    }
    if sensors.get("Floor"):
        status["floorTemp"] = sensors["Floor"].get("Val")
    return status


async def _cmd_devices_temp(args: argparse.Namespace, rt: _Runtime) -> dict:
    device = await rt.api.get_device(args.device_id)
    mode = ((device.get("data") or {}).get("Mode") or {}).get("Val")
    if mode in ("Heat", "Auto"):
        await rt.api.set_device_heat_temp(args.device_id, args.temperature)
        return {"deviceId": args.device_id, "heat": args.temperature, "units": _units(device)}
    if mode == "Cool":
        await rt.api.set_device_cool_temp(args.device_id, args.temperature)
        return {"deviceId": args.device_id, "cool": args.temperature, "units": _units(device)}
    raise ValueError("Device must be in Heat, Cool, or Auto mode to set temperature")


async def _cmd_devices_temp_heat(args: argparse.Namespace, rt: _Runtime) -> dict:
    device = await rt.api.set_device_heat_temp(args.device_id, args.temperature)
    return {"deviceId": args.device_id, "heat": args.temperature, "units": _units(device)}


async def _cmd_devices_temp_cool(args: argparse.Namespace, rt: _Runtime) -> dict:
    device = await rt.api.set_device_cool_temp(args.device_id, args.temperature)
    return {"deviceId": args.device_id, "cool": args.temperature, "units": _units(device)}


async def _cmd_devices_temp_auto(args: argparse.Namespace, rt: _Runtime) -> dict:
    device = await rt.api.set_device_auto_temps(args.device_id, args.heat, args.cool)
    return {"deviceId": args.device_id, "heat": args.heat, "cool": args.cool, "units": _units(device)}


async def _cmd_devices_mode(args: argparse.Namespace, rt: _Runtime) -> dict:
    mode = _choice(args.mode, DEVICE_MODES, "Mode")
    await rt.api.set_device_mode(args.device_id, mode)
    return {"deviceId": args.device_id, "mode": mode}


async def _cmd_devices_fan(args: argparse.Namespace, rt: _Runtime) -> dict:
    fan = _choice(args.fan, FAN_MODES, "Fan mode")
    await rt.api.set_device_fan(args.device_id, fan)
    return {"deviceId": args.device_id, "fan": fan}


async def _cmd_devices_floor_min(args: argparse.Namespace, rt: _Runtime) -> dict:
    device = await rt.api.set_device_floor_min(args.device_id, args.temperature)
    return {"deviceId": args.device_id, "floorMin": args.temperature, "units": _units(device)}


async def _cmd_devices_away_temp(args: argparse.Namespace, rt: _Runtime) -> dict:
    device = await rt.api.set_device_away_temp(args.device_id, args.temperature)
    away = args.temperature if args.temperature else None
    return {"deviceId": args.device_id, "awayTemp": away, "units": _units(device)}


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="watts-cli",
        description="Watts Home (tekmar WiFi) thermostat CLI.",
    )
    p.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")
    p.add_argument(
        "--timeout-seconds",
        default=None,
        help="HTTP timeout in seconds (default: WATTS_TIMEOUT_SECONDS or 15).",
    )
    p.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help='Logging verbosity (default: WATTS_LOG_LEVEL or "INFO").',
    )
    p.add_argument(
        "--token-path",
        default=None,
        help="Token file location (default: WATTS_TOKEN_PATH or ~/.watts-home/tokens.json).",
    )
    sub = p.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Log in with email and password.")
    login.add_argument("--email", default=None, help="Account email (default: WATTS_EMAIL, else prompt).")
    login.set_defaults(handler=_cmd_login)
    sub.add_parser("refresh", help="Force a token refresh.").set_defaults(handler=_cmd_refresh)
    sub.add_parser("logout", help="Delete stored tokens.").set_defaults(handler=_cmd_logout)

    locations = sub.add_parser("locations", help="Manage locations.").add_subparsers(dest="action", required=True)
    locations.add_parser("list", help="List locations.").set_defaults(handler=_cmd_locations_list)
    away = locations.add_parser("away", help="Set location away mode.")
    away.add_argument("location_id")
    away.add_argument("state", help="on|off")
    away.set_defaults(handler=_cmd_locations_away)

    devices = sub.add_parser("devices", help="Manage devices.").add_subparsers(dest="action", required=True)
    dev_list = devices.add_parser("list", help="List devices in a location.")
    dev_list.add_argument("location_id")
    dev_list.set_defaults(handler=_cmd_devices_list)

    status = devices.add_parser("status", help="Show device status.")
    status.add_argument("device_id")
    status.set_defaults(handler=_cmd_devices_status)

    for name, handler, help_text in (
        ("temp", _cmd_devices_temp, "Set the setpoint for the current mode (heat or cool)."),
        ("temp-heat", _cmd_devices_temp_heat, "Set the heat setpoint."),
        ("temp-cool", _cmd_devices_temp_cool, "Set the cool setpoint."),
        ("floor-min", _cmd_devices_floor_min, "Set the floor minimum temperature."),
        ("away-temp", _cmd_devices_away_temp, "Set the away temperature (0 unsets)."),
    ):
        cmd = devices.add_parser(name, help=help_text)
        cmd.add_argument("device_id")
        cmd.add_argument("temperature", type=float)
        cmd.set_defaults(handler=handler)

    auto = devices.add_parser("temp-auto", help="Set both Auto mode thresholds.")
    auto.add_argument("device_id")
    auto.add_argument("heat", type=float)
    auto.add_argument("cool", type=float)
    auto.set_defaults(handler=_cmd_devices_temp_auto)

    mode = devices.add_parser("mode", help="Set device mode (off|heat|cool|auto).")
    mode.add_argument("device_id")
    mode.add_argument("mode")
    mode.set_defaults(handler=_cmd_devices_mode)

    fan = devices.add_parser("fan", help="Set fan mode (auto|on).")
    fan.add_argument("device_id")
    fan.add_argument("fan")
    fan.set_defaults(handler=_cmd_devices_fan)

    return p.parse_args(argv)


async def _run(args: argparse.Namespace, log: logging.LoggerAdapter) -> Any:
    rt = _Runtime(args, log)
    try:
        return await args.handler(args, rt)
    finally:
        rt.close()


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    run_id = uuid.uuid4().hex[:12]
    log_level = args.log_level or config_mod._get_env("WATTS_LOG_LEVEL") or "INFO"
    log = configure_logging(run_id=run_id, level=log_level)
    log.debug("command: %s %s", args.command, getattr(args, "action", "") or "")
    try:
        result = asyncio.run(_run(args, log))
    except AuthError as e:
        log.error("authentication error: %s", sanitize_text(str(e)))
        print(f"Error: {sanitize_text(str(e))}", file=sys.stderr)
        return 2
    except RequestError as e:
        log.error("request error: %s", sanitize_text(str(e)))
        print(f"Error: {sanitize_text(str(e))}", file=sys.stderr)
        return 3
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        log.warning("interrupted by user")
        print("Interrupted.", file=sys.stderr)
        return 130

    if args.pretty:
        print(json.dumps(result, indent=2, ensure_ascii=False, sort_keys=True))
    else:
        print(json.dumps(result, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
