"""
quota.py — Transmission Size Quota
====================================
Decides whether a transmission may keep receiving chunks.

Two figures are compared against the ceiling:
    * the total size the client declares (``x-total-size``), which
      lets an oversized upload be refused on its very first chunk but
      can be spoofed, and
    * the cumulative size the server actually received, which is
      authoritative.
"""

import enum
import logging
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 10 * 1024 * 1024  # 10 MiB


class QuotaDecision(str, enum.Enum):
    CONTINUE = "continue"
    ABORT = "abort"


class QuotaEnforcer:
    """Compares transmission sizes against a configurable ceiling."""

    def __init__(self, default_max_size: Optional[int] = None):
        self.default_max_size = default_max_size or DEFAULT_MAX_SIZE
        logger.info("QuotaEnforcer initialized (max=%d bytes)", self.default_max_size)

    def ceiling(self, max_size: Optional[int] = None) -> int:
        """Resolve the per-call override, falling back to the default."""
        return max_size or self.default_max_size

    def check(
        self,
        cumulative_size: int,
        declared_total: Optional[int] = None,
        max_size: Optional[int] = None,
    ) -> QuotaDecision:
        """
        Decide whether the transmission may continue.

        Args:
            cumulative_size: Bytes received so far.
            declared_total: Total size announced by the client, if any.
            max_size: Per-call ceiling override.

        Returns:
            QuotaDecision.ABORT if either size exceeds the ceiling.
        """
        limit = self.ceiling(max_size)
        if declared_total is not None and declared_total > limit:
            logger.info("Declared size %d exceeds limit %d", declared_total, limit)
            return QuotaDecision.ABORT
        if cumulative_size > limit:
            logger.info("Received size %d exceeds limit %d", cumulative_size, limit)
            return QuotaDecision.ABORT
        return QuotaDecision.CONTINUE
