"""Audit log of one adjustment.

Every message is kept, in order, for the result's ``messages`` list and is
also emitted through the standard ``logging`` module.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional


class AuditLog:
    """Ordered, human-readable trail of the decisions taken by a solve."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.messages: List[str] = []
        self._logger = logger or logging.getLogger(__name__)

    def info(self, message: str) -> None:
        self.messages.append(message)
        self._logger.info(message)

    def warning(self, message: str) -> None:
        self.messages.append(message)
        self._logger.warning(message)

    def debug(self, message: str) -> None:
        self._logger.debug(message)

    def extend(self, messages: Iterable[str]) -> None:
        """Record messages that were already logged by their producer."""
        self.messages.extend(messages)

    def __len__(self) -> int:
        return len(self.messages)
