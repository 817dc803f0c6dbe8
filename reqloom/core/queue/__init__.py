"""Delivery queue: job messages, publishers and callback signing.

Exports:
- JobMessage: serialized unit of inference work
- DeliveryQueue: publisher protocol the orchestrator depends on
- QStashQueue: HTTP relay publisher
- LocalDeliveryQueue: in-process background delivery
- sign_body / verify_signature: callback authentication
"""

from typing import Protocol

from .local import LocalDeliveryQueue
from .messages import JobMessage
from .qstash import QStashQueue
from .signing import SIGNATURE_HEADER, sign_body, verify_signature


class DeliveryQueue(Protocol):
    def publish(self, message: JobMessage) -> str:
        ...


__all__ = [
    "DeliveryQueue",
    "JobMessage",
    "LocalDeliveryQueue",
    "QStashQueue",
    "SIGNATURE_HEADER",
    "sign_body",
    "verify_signature",
]
