"""
Bridge core: job handler on the worker side, consumer loop on the other.
"""

from .completion import CompletionErrorHandler, CompletionOutcome
from .confirmation import DeliveryConfirmation
from .consumer_loop import ConsumerLoop, ConsumerStats
from .context import BridgeContext
from .handler import JobHandler

__all__ = [
    "BridgeContext",
    "CompletionErrorHandler",
    "CompletionOutcome",
    "ConsumerLoop",
    "ConsumerStats",
    "DeliveryConfirmation",
    "JobHandler",
]
