"""
Custom exceptions for the campaign dialer.
"""
from typing import Optional


class DialerError(Exception):
    """Base exception for the campaign dialer"""
    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(DialerError):
    """Resource not found"""
    def __init__(self, resource: str = "Resource", resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(message)


class InvalidLeadTransition(DialerError):
    """Lead call_status change that the state machine does not allow"""
    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Lead cannot move from '{from_status}' to '{to_status}'")


class ProviderError(DialerError):
    """Voice provider call-create failed"""
    def __init__(self, message: str = "Voice provider error", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderTransportError(ProviderError):
    """Timeout, network failure, 5xx or malformed response - retryable"""


class ProviderRejectedError(ProviderError):
    """4xx - the request itself is wrong (bad assistant/number reference)"""


class WebhookAuthenticationError(DialerError):
    """Webhook signature missing or invalid"""
    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)
