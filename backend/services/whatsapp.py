"""
WhatsApp Gateway Client
Sends alert messages through the WhatsApp HTTP gateway.

Endpoints:
    POST {base}/api/send    {"to": "60123456789", "message": "..."} → {"success": true, "id": "..."}
    GET  {base}/api/status  → {"ready": true, "hasQR": false}

send() checks /api/status first and refuses while the gateway is not ready.
It never raises for gateway or network failures; it reports them in the
returned SendResult so the dispatcher can record them to history.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from alerts.models import SendResult
from core.errors import ConfigurationError, DispatchError

logger = logging.getLogger(__name__)


@dataclass
class GatewayStatus:
    ready: bool = False
    has_qr: bool = False

    def to_dict(self) -> dict:
        return {"ready": self.ready, "has_qr": self.has_qr}


class WhatsAppClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def send(self, phone_number: str, message: str) -> SendResult:
        try:
            return await asyncio.to_thread(self._send, phone_number, message)
        except DispatchError as e:
            logger.warning("WhatsApp send to %s failed: %s", phone_number, e)
            return SendResult(success=False, error=str(e))

    async def status(self) -> GatewayStatus:
        if not self.is_configured:
            return GatewayStatus()
        try:
            return await asyncio.to_thread(self._status)
        except DispatchError as e:
            logger.warning("WhatsApp status check failed: %s", e)
            return GatewayStatus()

    def _send(self, phone_number: str, message: str) -> SendResult:
        if not self.is_configured:
            raise ConfigurationError("WhatsApp API URL is not configured", phone_number)
        if not self._ready():
            raise ConfigurationError("WhatsApp API is not ready", phone_number)

        try:
            resp = self.session.post(
                f"{self.base_url}/api/send",
                json={"to": phone_number, "message": message},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise DispatchError(f"Network error: {e}", phone_number) from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not resp.ok:
            error = data.get("error") or f"Failed to send message: {resp.status_code} {resp.reason}"
            raise DispatchError(error, phone_number)

        if data.get("success") is False:
            raise DispatchError(data.get("error") or "Gateway rejected the message", phone_number)

        return SendResult(success=True, message_id=data.get("id"))

    def _ready(self) -> bool:
        try:
            return self._status().ready
        except DispatchError as e:
            logger.warning("WhatsApp status check failed: %s", e)
            return False

    def _status(self) -> GatewayStatus:
        try:
            resp = self.session.get(f"{self.base_url}/api/status", timeout=self.timeout)
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise DispatchError(f"Status unavailable: {e}") from e

        if not isinstance(data, dict):
            return GatewayStatus()
        return GatewayStatus(ready=data.get("ready") is True, has_qr=data.get("hasQR") is True)

    def close(self) -> None:
        self.session.close()


_whatsapp_client: Optional[WhatsAppClient] = None


def get_whatsapp_client() -> WhatsAppClient:
    global _whatsapp_client
    if _whatsapp_client is None:
        from config import get_settings
        settings = get_settings()
        _whatsapp_client = WhatsAppClient(settings.whatsapp_api_url, timeout=settings.request_timeout_sec)
    return _whatsapp_client
