"""
Token Delivery
==============
Factor registry and built-in out-of-band delivery channels.
"""

from .models import DeliveryResult, DeliveryStatus, Factor
from .registry import FactorRegistry
from .console import ConsoleFactor
from .twilio import TwilioSMSFactor

__all__ = [
    # Models
    "DeliveryResult",
    "DeliveryStatus",
    "Factor",
    # Registry
    "FactorRegistry",
    # Factors
    "ConsoleFactor",
    "TwilioSMSFactor",
]
