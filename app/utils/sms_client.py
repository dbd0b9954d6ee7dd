import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


class TextBeeClient:
    """Sends SMS through a TextBee Android gateway device.

    Used for OTP delivery and the ``/api/sms/send`` relay. Transient failures
    are retried once after a short delay; anything else propagates.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        device_id: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = (api_url or settings.TEXTBEE_API_URL).rstrip("/")
        self.device_id = device_id if device_id is not None else settings.TEXTBEE_DEVICE_ID
        self.api_key = api_key if api_key is not None else settings.TEXTBEE_API_KEY
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.device_id and self.api_key)

    async def send_sms(self, recipients: List[str], message: str) -> Dict[str, Any]:
        if not self.is_configured:
            raise RuntimeError("TextBee is not configured (TEXTBEE_DEVICE_ID / TEXTBEE_API_KEY)")

        url = f"{self.api_url}/gateway/devices/{self.device_id}/send-sms"
        payload = {"recipients": recipients, "message": message}
        headers = {"x-api-key": self.api_key}
        last_exc: Optional[Exception] = None
        for attempt in range(2):
            try:
                async with httpx.AsyncClient(transport=self.transport) as client:
                    response = await client.post(url, json=payload, headers=headers, timeout=30.0)
                    response.raise_for_status()
                    logger.info(f"SMS sent to {len(recipients)} recipient(s)")
                    return response.json()
            except httpx.HTTPStatusError as e:
                # Retry only on transient server-side errors
                if attempt == 0 and e.response.status_code in TRANSIENT_STATUS_CODES:
                    await asyncio.sleep(1.0)
                    continue
                last_exc = e
                break
            except (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout, httpx.RemoteProtocolError) as e:
                if attempt == 0:
                    await asyncio.sleep(1.0)
                    continue
                last_exc = e
                break
        if last_exc:
            raise last_exc
        raise RuntimeError("Unknown error sending SMS via TextBee")
