"""Voice provider adapters"""
from .vapi_provider import VapiVoiceProvider

__all__ = ["VapiVoiceProvider"]
