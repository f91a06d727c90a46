"""
Unit Tests for Vapi Voice Provider
"""
import json

import httpx
import pytest

from campaign_dialer.core.exceptions import ProviderRejectedError, ProviderTransportError
from campaign_dialer.domain.interfaces.voice_provider import CreateCallRequest
from campaign_dialer.infrastructure.telephony import VapiVoiceProvider


def make_provider(handler) -> VapiVoiceProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://api.vapi.ai")
    return VapiVoiceProvider(api_key="test-key", client=client)


REQUEST = CreateCallRequest(
    assistant_id="asst-1",
    to_number="+15551234567",
    phone_number_id="vapi-pn-1",
    metadata={"call_id": "call-1"}
)


class TestCreateCall:
    """Tests for POST /call"""

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "vapi-call-1", "status": "queued"})

        handle = await make_provider(handler).create_call(REQUEST)

        assert handle.provider_call_id == "vapi-call-1"
        assert handle.status == "queued"
        assert seen["path"] == "/call"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"] == {
            "assistantId": "asst-1",
            "customer": {"number": "+15551234567"},
            "metadata": {"call_id": "call-1"},
            "phoneNumberId": "vapi-pn-1",
        }

    @pytest.mark.asyncio
    async def test_client_error_is_rejection(self):
        def handler(request):
            return httpx.Response(400, json={"message": ["assistantId must be a UUID"]})

        with pytest.raises(ProviderRejectedError) as exc_info:
            await make_provider(handler).create_call(REQUEST)
        assert exc_info.value.status_code == 400
        assert "assistantId must be a UUID" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_server_error_is_transport(self):
        with pytest.raises(ProviderTransportError) as exc_info:
            await make_provider(lambda r: httpx.Response(503, text="unavailable")).create_call(REQUEST)
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [408, 429])
    async def test_timeout_and_rate_limit_are_transport(self, status_code):
        def handler(request):
            return httpx.Response(status_code, json={"message": "Too many requests"})

        with pytest.raises(ProviderTransportError) as exc_info:
            await make_provider(handler).create_call(REQUEST)
        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_network_error_is_transport(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderTransportError):
            await make_provider(handler).create_call(REQUEST)

    @pytest.mark.asyncio
    async def test_missing_call_id_is_transport(self):
        with pytest.raises(ProviderTransportError):
            await make_provider(lambda r: httpx.Response(201, json={"status": "queued"})).create_call(REQUEST)

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            VapiVoiceProvider(api_key="")
