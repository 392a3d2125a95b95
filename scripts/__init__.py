"""scripts package initializer so the tools can be run with
`python -m scripts.queue_status`.
"""

from .queue_status import report

__all__ = ["report"]
