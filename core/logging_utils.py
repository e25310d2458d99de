import json
import datetime
import os
import sys

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "WARNING": 30, "ERROR": 40}


def _min_level() -> int:
    return _LEVELS.get(os.getenv("GOALFORGE_LOG_LEVEL", "INFO").upper(), 20)


def log_json(level: str, event: str, goal: str = None, details: dict = None):
    """
    Emits a single-line JSON log to stderr by default.
    Automatically masks sensitive info in details.

    Args:
        level (str): Log level (e.g., "DEBUG", "INFO", "WARN", "ERROR").
        event (str): Short snake_case description of the event.
        goal (str, optional): The goal id being processed. Defaults to None.
        details (dict, optional): A dictionary for additional information. Defaults to None.
    """
    if _LEVELS.get(level.upper(), 20) < _min_level():
        return

    from core.sanitizer import mask_secrets
    safe_details = mask_secrets(details) if details else None

    log_entry = {
        "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "level": level.upper(),
        "event": event,
    }
    if goal:
        log_entry["goal"] = goal
    if safe_details:
        log_entry["details"] = safe_details

    stream_name = os.getenv("GOALFORGE_LOG_STREAM", "stderr").lower()
    stream = sys.stdout if stream_name == "stdout" else sys.stderr
    stream.write(json.dumps(log_entry, default=str) + "\n")
    stream.flush()  # Ensure the log is written immediately
