"""Per-request token usage accounting and latency tracking."""

import time
from typing import Any, Dict, Optional

from streamforge.chat.models import UsageTotals
from streamforge.utils.logger import logger


class UsageAccumulator:
    """
    Running token totals for one request lifecycle.

    Summary, context selection and every streamed segment add their usage
    here. Counters only ever grow; negative deltas are clamped to zero.
    """

    def __init__(self):
        """Initialize usage tracking."""
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self._totals = UsageTotals()
        self.calls: int = 0

    def start_timer(self) -> None:
        """Start the latency timer."""
        self.start_time = time.time()

    def stop_timer(self) -> None:
        """Stop the latency timer."""
        self.end_time = time.time()
        if self.start_time:
            logger.debug(f"Usage timer stopped: {self.get_latency_ms()}ms latency")

    def get_latency_ms(self) -> int:
        """
        Get the latency in milliseconds.

        Returns:
            Latency in milliseconds, or 0 if timer wasn't started/stopped
        """
        if self.start_time is None or self.end_time is None:
            return 0
        return int((self.end_time - self.start_time) * 1000)

    @property
    def totals(self) -> UsageTotals:
        """Read-only snapshot of the running totals."""
        return self._totals

    def add(self, usage: Optional[UsageTotals]) -> UsageTotals:
        """
        Merge a usage delta into the running totals.

        Args:
            usage: Delta reported by one provider call (None is ignored)

        Returns:
            The updated totals
        """
        if usage is None:
            return self._totals
        delta = UsageTotals(
            prompt_tokens=max(0, usage.prompt_tokens or 0),
            completion_tokens=max(0, usage.completion_tokens or 0),
            total_tokens=max(0, usage.total_tokens or 0),
        )
        self._totals = self._totals + delta
        self.calls += 1
        logger.debug(
            f"Usage merged: +{delta.prompt_tokens}/{delta.completion_tokens}/{delta.total_tokens}, "
            f"totals prompt={self._totals.prompt_tokens} completion={self._totals.completion_tokens} "
            f"total={self._totals.total_tokens}"
        )
        return self._totals

    def to_annotation(self) -> Dict[str, Any]:
        """Usage annotation sent to the client once the reply is complete."""
        return {"type": "usage", "value": self._totals.to_wire()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt_tokens": self._totals.prompt_tokens,
            "completion_tokens": self._totals.completion_tokens,
            "total_tokens": self._totals.total_tokens,
            "latency_ms": self.get_latency_ms(),
            "calls": self.calls,
        }

    @staticmethod
    def extract_usage_from_response_metadata(
        response_metadata: Dict[str, Any]
    ) -> UsageTotals:
        """
        Extract token usage from LangChain response metadata.

        Args:
            response_metadata: Response metadata from a LangChain AIMessage

        Returns:
            UsageTotals (all zero when nothing was reported)
        """
        # Try usage_metadata first (newer format)
        usage_metadata = response_metadata.get("usage_metadata") or {}
        if usage_metadata:
            prompt_tokens = usage_metadata.get("input_tokens", 0)
            completion_tokens = usage_metadata.get("output_tokens", 0)
            total_tokens = usage_metadata.get("total_tokens", 0)
            if prompt_tokens > 0 or completion_tokens > 0:
                return UsageTotals(prompt_tokens, completion_tokens, total_tokens)

        # Fallback to usage (older format)
        usage = response_metadata.get("usage") or {}
        prompt_tokens = usage.get("prompt_tokens", 0)
        completion_tokens = usage.get("completion_tokens", 0)
        total_tokens = usage.get("total_tokens", 0)

        # Some providers report token_usage instead
        if prompt_tokens == 0 and completion_tokens == 0:
            token_usage = response_metadata.get("token_usage") or {}
            if token_usage:
                prompt_tokens = token_usage.get("prompt_tokens", 0) or token_usage.get("input_tokens", 0)
                completion_tokens = token_usage.get("completion_tokens", 0) or token_usage.get("output_tokens", 0)
                total_tokens = token_usage.get("total_tokens", 0)

        return UsageTotals(prompt_tokens, completion_tokens, total_tokens)
