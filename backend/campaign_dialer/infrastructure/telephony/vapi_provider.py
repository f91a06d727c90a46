"""
Vapi Voice Provider
Places outbound AI voice calls through the Vapi REST API
"""
import logging
from typing import Any, Dict, Optional

import httpx

from campaign_dialer.core.exceptions import ProviderRejectedError, ProviderTransportError
from campaign_dialer.domain.interfaces.voice_provider import (
    CreateCallRequest,
    ProviderCallHandle,
    VoiceCallProvider,
)

logger = logging.getLogger(__name__)

# Request timeout and rate limiting: worth retrying, not a rejection of the call
TRANSIENT_STATUS_CODES = {408, 429}


class VapiVoiceProvider(VoiceCallProvider):
    """
    Vapi implementation of VoiceCallProvider.

    The metadata on the request is attached to the call and echoed back on
    every webhook, which is how events find their Call row.
    """

    DEFAULT_BASE_URL = "https://api.vapi.ai"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        if not api_key:
            raise ValueError("Vapi API key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._client = client

    @property
    def name(self) -> str:
        return "vapi"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout
            )
        return self._client

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _build_body(self, request: CreateCallRequest) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "assistantId": request.assistant_id,
            "customer": {"number": request.to_number},
            "metadata": dict(request.metadata),
        }
        if request.phone_number_id:
            body["phoneNumberId"] = request.phone_number_id
        return body

    async def create_call(self, request: CreateCallRequest) -> ProviderCallHandle:
        client = self._get_client()

        try:
            response = await client.post("/call", json=self._build_body(request), headers=self._headers())
        except httpx.TimeoutException as e:
            raise ProviderTransportError(f"Vapi request timed out: {e}")
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"Vapi request failed: {e}")

        if response.status_code >= 500 or response.status_code in TRANSIENT_STATUS_CODES:
            raise ProviderTransportError(
                f"Vapi error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )
        if response.status_code >= 400:
            raise ProviderRejectedError(
                f"Vapi rejected call: {self._error_message(response)}",
                status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError:
            raise ProviderTransportError(
                "Vapi returned a malformed response",
                status_code=response.status_code
            )

        call_id = data.get("id") if isinstance(data, dict) else None
        if not call_id:
            raise ProviderTransportError(
                "Vapi response has no call id",
                status_code=response.status_code
            )

        logger.info(f"Vapi call created: {call_id} -> {request.to_number}")
        return ProviderCallHandle(provider_call_id=str(call_id), status=data.get("status"))

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text[:200]
        message = data.get("message") if isinstance(data, dict) else None
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        return str(message or data)[:200]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
