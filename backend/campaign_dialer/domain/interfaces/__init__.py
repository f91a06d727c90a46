"""Domain interfaces"""
from .orchestrator_repository import OrchestratorRepository
from .call_slot_store import CallSlotStore
from .voice_provider import (
    CreateCallRequest,
    ProviderCallHandle,
    VoiceCallProvider,
)

__all__ = [
    "OrchestratorRepository",
    "CallSlotStore",
    "CreateCallRequest",
    "ProviderCallHandle",
    "VoiceCallProvider",
]
