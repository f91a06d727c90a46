"""
Voice Provider Interface
Abstract base class for AI voice-call providers
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional
from pydantic import BaseModel, Field


class CreateCallRequest(BaseModel):
    """Outbound call request"""
    assistant_id: str
    to_number: str
    phone_number_id: Optional[str] = Field(
        default=None,
        description="Provider id of the originating number"
    )
    metadata: Dict[str, str] = Field(
        default_factory=dict,
        description="Echoed back on webhooks; carries our own call id"
    )


class ProviderCallHandle(BaseModel):
    """Provider response to a create-call request"""
    provider_call_id: str
    status: Optional[str] = None


class VoiceCallProvider(ABC):
    """Abstract base class for voice providers"""

    @abstractmethod
    async def create_call(self, request: CreateCallRequest) -> ProviderCallHandle:
        """
        Place an outbound call.

        Raises:
            ProviderTransportError: timeout, network error, 5xx, malformed response
            ProviderRejectedError: the provider refused the request (4xx)
        """
        pass

    async def close(self) -> None:
        """Release resources"""
        return None

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
