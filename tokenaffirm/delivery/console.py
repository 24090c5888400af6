"""
Console Factor
==============
Development factor that records issued tokens in the log stream.
"""

from typing import Any, Dict, Optional
import structlog

from ..log import mask_contact
from .models import DeliveryResult

logger = structlog.get_logger(__name__)


class ConsoleFactor:
    """
    Logs that a token was issued instead of sending it.

    For development only. The token itself is logged only when
    ``reveal_token`` is set.
    """

    def __init__(self, reveal_token: bool = False, settings: Optional[Dict[str, Any]] = None):
        self.reveal_token = reveal_token
        self.settings = settings

    def send(
        self,
        contact: str,
        token: str,
        factor: str = "unknown",
        settings: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        logger.info(
            "Token issued",
            contact=mask_contact(contact),
            factor=factor,
            token=token if self.reveal_token else "***",
        )
        return DeliveryResult(success=True)
