"""What every platform bot provides on top of the shared queue.

Bots are not related by inheritance; each keeps its own cadence state
(cursor, dedup memory) private and only has to offer these two operations.
"""

from typing import Any, Optional, Protocol

from jobs.models import JobRecord
from jobs.waiter import WaitOutcome

PROCESSING_TEXT = "🤔 Processing your question..."
ERROR_TEXT = "❌ Sorry, I encountered an error processing your request. Please try again later."
TIMEOUT_TEXT = "⏱️ Your request is taking longer than expected. Please try again later."
UNEXPECTED_ERROR_TEXT = "❌ Sorry, something went wrong. Please try again later."
EMPTY_QUESTION_TEXT = "👋 Hi! Ask me a question and I'll do my best to answer it."


class PlatformAdapter(Protocol):
    def build_job(self, event: Any) -> Optional[JobRecord]:
        """Turn a platform event into a job, or None when it should not be queued."""
        ...

    def deliver(self, target: Any, outcome: WaitOutcome) -> Any:
        """Send the outcome of a job back to the platform."""
        ...
