"""Bridge context: everything the handler and the consumer loop share."""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from ..broker.models import InboundRecord, OutboundMessage
from ..config import BridgeConfig


class MessageProducer(Protocol):
    def produce(self, topic: str, message: OutboundMessage, on_delivery=None) -> Any:
        ...

    def flush(self, timeout: float) -> int:
        ...


class RecordSource(Protocol):
    @property
    def topic(self) -> str:
        ...

    def poll(self, timeout: float) -> Optional[InboundRecord]:
        ...

    def commit(self, record: InboundRecord) -> None:
        ...

    def close(self) -> bool:
        ...


class JobCompleter(Protocol):
    def complete_job(self, job_key: int, variables: Optional[Dict[str, Any]] = None) -> None:
        ...


@dataclass
class BridgeContext:
    """
    Built once at startup and passed to the job handler and the consumer loop.

    A worker process fills in `producer`; a consumer process fills in
    `completer`. `stop` is the cancellation token of the process.
    """

    config: BridgeConfig
    producer: Optional[MessageProducer] = None
    completer: Optional[JobCompleter] = None
    stop: threading.Event = field(default_factory=threading.Event)
