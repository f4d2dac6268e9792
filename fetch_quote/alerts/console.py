from __future__ import annotations

import sys
from datetime import datetime
from typing import TextIO

from ..utils.state_store import AlertEvent

BOLD = "\x1b[1m"
YELLOW = "\x1b[33m"
CYAN = "\x1b[36m"
RESET = "\x1b[0m"


def _local_time(iso_ts: str) -> str:
    try:
        return datetime.fromisoformat(iso_ts).astimezone().strftime("%H:%M:%S")
    except ValueError:
        return iso_ts


def format_console_alert(event: AlertEvent) -> str:
    return f"[{_local_time(event.triggered_at)}] {event.alert.symbol} - {event.message}"


class ConsoleNotifier:
    """Prints triggered alerts to the terminal and rings the bell."""

    def __init__(self, stream: TextIO | None = None, color: bool = True):
        self.stream = stream or sys.stdout
        self.color = color

    def send(self, event: AlertEvent) -> None:
        ts = _local_time(event.triggered_at)
        price = f"${event.current_value:.2f}"
        if self.color:
            line = f"{BOLD}{YELLOW}⚠ ALERT{RESET} [{ts}] {CYAN}{event.alert.symbol}{RESET} {price} - {event.message}"
        else:
            line = f"ALERT [{ts}] {event.alert.symbol} {price} - {event.message}"
        print(line, file=self.stream)
        print("\x07", end="", file=self.stream)
        self.stream.flush()
