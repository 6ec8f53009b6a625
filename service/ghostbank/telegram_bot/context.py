from __future__ import annotations

"""
Session context for the device running GhostBank.

Holds the handle of the signed-in user. The only persisted piece is the last
authenticated handle, kept in a small JSON file and read at startup to
restore the session silently.
"""

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class SessionContext:
    """Current handle plus explicit load/save against local device state."""

    def __init__(self, state_path: str | Path):
        self.state_path = Path(state_path)
        self.handle: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.handle is not None

    async def load(self) -> str | None:
        """Read the last authenticated handle, if any."""
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session state {self.state_path}: {e}")
            return None

        handle = data.get("last_handle") if isinstance(data, dict) else None
        self.handle = handle or None
        return self.handle

    async def save(self, handle: str) -> None:
        self.handle = handle
        self.state_path.write_text(json.dumps({"last_handle": handle}), encoding="utf-8")

    async def clear(self) -> None:
        self.handle = None
        self.state_path.unlink(missing_ok=True)
