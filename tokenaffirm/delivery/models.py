"""
Delivery Models
===============
Factor definition and delivery outcome.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class DeliveryResult:
    """Result of a token send operation."""
    success: bool
    status: DeliveryStatus = DeliveryStatus.SENT
    provider_message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class Factor:
    """
    A named out-of-band delivery channel.

    ``send(contact, token, factor, settings)`` may be a plain function or a
    coroutine function. Raising, or returning a ``DeliveryResult`` with
    ``success=False``, counts as a failed delivery.
    """
    send: Callable[..., Any]
    settings: Optional[Dict[str, Any]] = None
