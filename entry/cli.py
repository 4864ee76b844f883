"""
CLI Entry Adapter.

Responsibility:
- Receive user input from terminal
- Turn it into a query string plus pipeline options
- NO normalization, NO extraction, NO data access
"""

import uuid
from typing import Any


class CLIAdapter:
    """Command-line entry adapter."""

    def __init__(self, session_id: str | None = None, skip_cache: bool = False):
        self.session_id = session_id or str(uuid.uuid4())[:8]
        self.skip_cache = skip_cache
        self._counter = 0

    def read_input(self, raw_input: str) -> tuple[str, dict[str, Any]]:
        """Trimmed query text and the options for one pipeline run."""
        self._counter += 1
        options = {
            "skip_cache": self.skip_cache,
            "request_id": f"{self.session_id}-{self._counter}",
            "source": "cli",
        }
        return (raw_input or "").strip(), options
