"""Host shell capability — where the summary line and autostart live.

The tray icon, window and OS login items belong to the native shell.
This module only defines what the dashboard needs from it:

    set_title(text)            — show the one-line summary
    is_autostart_enabled()     — query the login item
    set_autostart(enabled)     — request enable/disable

ConsoleHost is the default: it writes a waybar-style JSON object per
title change to stdout and keeps the autostart flag in memory.
"""

from __future__ import annotations

import json
import sys
from typing import TextIO

from candlebar.models.dashboard import DashboardState
from candlebar.services.formatter import format_dashboard, render_list
from candlebar.utils.logger import logger


class HostShell:
    """Interface the native shell implements."""

    def set_title(self, title: str, tooltip: str = "") -> None:
        raise NotImplementedError

    def is_autostart_enabled(self) -> bool:
        raise NotImplementedError

    def set_autostart(self, enabled: bool) -> bool:
        """Request a change; returns the state actually in effect."""
        raise NotImplementedError


class ConsoleHost(HostShell):
    """Status-bar host that prints one JSON line per update."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._autostart = False
        self.title = ""

    def set_title(self, title: str, tooltip: str = "") -> None:
        self.title = title
        self._stream.write(json.dumps({"text": title, "tooltip": tooltip}) + "\n")
        self._stream.flush()

    def is_autostart_enabled(self) -> bool:
        return self._autostart

    def set_autostart(self, enabled: bool) -> bool:
        self._autostart = bool(enabled)
        return self._autostart


class SummaryPublisher:
    """Pushes the summary line to the host whenever it changes.

    Subscribe ``on_change`` to the ConfigStore; poll completions,
    rotation ticks and formatting-relevant config edits all arrive as
    store changes. A (title, tooltip) pair identical to the last one sent
    is not re-sent.
    """

    def __init__(self, host: HostShell) -> None:
        self.host = host
        self.last_title: str | None = None
        self.last_tooltip: str | None = None

    def publish(self, state: DashboardState) -> bool:
        view = format_dashboard(state)
        tooltip = render_list(view)
        if (view.summary, tooltip) == (self.last_title, self.last_tooltip):
            return False
        try:
            self.host.set_title(view.summary, tooltip=tooltip)
        except Exception:
            logger.exception("[Host] set_title failed")
            return False
        self.last_title = view.summary
        self.last_tooltip = tooltip
        return True

    def on_change(self, old: DashboardState, new: DashboardState) -> None:
        self.publish(new)
