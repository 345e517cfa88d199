"""
commands.py

Validates operator commands received by the control server and dispatches
them to the Vehicle core. Values may arrive as JSON numbers or numeric
strings; anything else is rejected here and never reaches the core.
"""

import logging
from typing import Any, Optional

from .errors import CommandError, RoverError

log = logging.getLogger(__name__)


def parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise CommandError(f"{name} not valid")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise CommandError(f"{name} not valid")


def parse_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise CommandError(f"{name} not valid")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise CommandError(f"{name} not valid") from None
    if result != result or result in (float("inf"), float("-inf")):
        raise CommandError(f"{name} not valid")
    return result


def normalize_message(message: Any) -> dict:
    """
    Accept either a JSON command dict or the bare ``"speed,angle"`` text
    form sent by simple drive clients.
    """
    if isinstance(message, dict):
        return message
    if isinstance(message, str):
        parts = message.split(",")
        if len(parts) != 2:
            raise CommandError("expected 'speed,angle'")
        return {"command": "drive", "speed": parts[0], "angle": parts[1]}
    raise CommandError("command must be an object")


async def handle_command(vehicle, message: Any) -> Optional[dict]:
    """
    Execute one operator command against *vehicle*.

    Returns:
        dict or None: A reply to send back to the client. Invalid input
        produces ``{"error": ...}``; actuator and sensor failures are
        reported the same way instead of propagating.
    """
    try:
        command = normalize_message(message)
        cmd_type = command.get("command")

        if cmd_type == "drive":
            speed = parse_int(command.get("speed"), "speed")
            angle = parse_int(command.get("angle"), "angle")
            state = await vehicle.submit_manual(speed, angle)
            return {"actuator": state.as_dict()}
        elif cmd_type == "turn_to":
            heading = parse_float(command.get("heading"), "heading")
            vehicle.begin_turn_to(heading)
            return {"turn": {"status": "running", "target": heading % 360.0}}
        elif cmd_type == "cancel_turn":
            await vehicle.cancel_turn()
            return {"turn": {"status": "cancelled"}}
        elif cmd_type == "emergency_stop":
            state = await vehicle.emergency_stop()
            return {"actuator": state.as_dict()}
        elif cmd_type == "reset":
            state = await vehicle.request_reset()
            return {"actuator": state.as_dict()}
        elif cmd_type == "orientation":
            return {"heading": await vehicle.heading()}
        elif cmd_type == "distance":
            return {"distance": await vehicle.distance()}
        else:
            log.warning(f"Unknown command type received: {cmd_type}")
            return {"error": f"unknown command: {cmd_type}"}
    except CommandError as e:
        log.warning(f"Rejected command {message!r}: {e}")
        return {"error": str(e)}
    except (RoverError, OSError) as e:
        log.error(f"Command {message!r} failed: {e}")
        return {"error": str(e)}
