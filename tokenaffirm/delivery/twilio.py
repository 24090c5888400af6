"""
Twilio SMS Factor
=================
Delivers tokens as SMS through the Twilio Messages API.
"""

from base64 import b64encode
from typing import Any, Dict, Optional

import httpx
import structlog

from ..log import mask_contact
from .models import DeliveryResult, DeliveryStatus

logger = structlog.get_logger(__name__)

DEFAULT_TEMPLATE = "Your verification code is {token}"


class TwilioSMSFactor:
    """
    Twilio SMS delivery factor.

    Settings:
        {
            "from_": "+15550001111",          # or messaging_service_sid
            "messaging_service_sid": "MGxxx", # optional
            "template": "Your code is {token}",
        }
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        settings: Optional[Dict[str, Any]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.settings = settings or {}
        self.base_url = f"https://api.twilio.com/2010-04-01/Accounts/{account_sid}"
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            auth = b64encode(f"{self.account_sid}:{self.auth_token}".encode()).decode()
            self._client = httpx.AsyncClient(
                headers={"Authorization": f"Basic {auth}"},
                timeout=30.0,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        contact: str,
        token: str,
        factor: str = "sms",
        settings: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        """Send the token to ``contact`` via Twilio."""
        settings = {**self.settings, **(settings or {})}
        template = settings.get("template", DEFAULT_TEMPLATE)

        payload = {
            "To": contact,
            "Body": template.format(token=token),
        }
        if settings.get("messaging_service_sid"):
            payload["MessagingServiceSid"] = settings["messaging_service_sid"]
        else:
            payload["From"] = settings.get("from_", "")

        try:
            response = await self._get_client().post(
                f"{self.base_url}/Messages.json",
                data=payload,
            )
        except httpx.HTTPError as e:
            logger.error("Twilio send failed", contact=mask_contact(contact), error=str(e))
            return DeliveryResult(
                success=False,
                status=DeliveryStatus.FAILED,
                error_message=str(e),
            )

        if response.status_code == 201:
            data = response.json()
            return DeliveryResult(
                success=True,
                status=self._map_status(data.get("status", "")),
                provider_message_id=data.get("sid"),
            )

        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        logger.warning(
            "Twilio rejected message",
            contact=mask_contact(contact),
            status_code=response.status_code,
            error_code=error_data.get("code"),
        )
        return DeliveryResult(
            success=False,
            status=DeliveryStatus.FAILED,
            error_code=str(error_data.get("code", response.status_code)),
            error_message=error_data.get("message", "Unknown error"),
        )

    def _map_status(self, twilio_status: str) -> DeliveryStatus:
        """Map Twilio status to delivery status."""
        mapping = {
            "queued": DeliveryStatus.PENDING,
            "accepted": DeliveryStatus.PENDING,
            "sending": DeliveryStatus.PENDING,
            "sent": DeliveryStatus.SENT,
            "delivered": DeliveryStatus.DELIVERED,
            "undelivered": DeliveryStatus.FAILED,
            "failed": DeliveryStatus.FAILED,
        }
        return mapping.get(twilio_status.lower(), DeliveryStatus.PENDING)
