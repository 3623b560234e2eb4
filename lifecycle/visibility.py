"""Visibility resynchronizer — refresh once when the dashboard comes back into view.

A backgrounded client may have its scheduled polls deferred; without a
resync the user could come back to stale RUNNING/STOPPED data.
"""

from __future__ import annotations

from typing import Callable

import structlog

from control_plane.errors import Validation

logger = structlog.get_logger()

_STATES = {"visible": True, "hidden": False}


class VisibilityResynchronizer:
    """Calls ``on_resume`` exactly once per hidden → visible transition."""

    def __init__(self, on_resume: Callable[[], None], visible: bool = True):
        self.on_resume = on_resume
        self._visible = visible
        self.resume_count = 0

    @property
    def visible(self) -> bool:
        return self._visible

    def set_visible(self, visible: bool) -> bool:
        """Record the new visibility. Returns True if a resync was triggered."""
        was_visible = self._visible
        self._visible = visible
        if not visible or was_visible:
            return False

        self.resume_count += 1
        logger.debug("Visible again, forcing refresh", resume_count=self.resume_count)
        self.on_resume()
        return True

    def on_visibility_state(self, state: str) -> bool:
        """Accept a ``"visible"`` / ``"hidden"`` visibility state string."""
        try:
            visible = _STATES[state]
        except KeyError:
            raise Validation(f"Unknown visibility state: {state!r}") from None
        return self.set_visible(visible)
