"""Domain services"""
from .credit_ledger import CreditLedger, CreditCheck, UsageRecord
from .admission_controller import AdmissionController, AdmissionDecision
from .phone_number_pool import PhoneNumberPool
from .lead_state_machine import LeadStateMachine
from .retry_policy import RetryPolicyManager
from .call_dispatcher import CallDispatcher, DispatchResult, DispatchFailure
from .call_reconciler import CallReconciler, ReconcileResult, classify_outcome
from .lead_import_service import (
    ImportContact,
    ImportSummary,
    LeadImportService,
    normalize_phone,
)

__all__ = [
    "CreditLedger",
    "CreditCheck",
    "UsageRecord",
    "AdmissionController",
    "AdmissionDecision",
    "PhoneNumberPool",
    "LeadStateMachine",
    "RetryPolicyManager",
    "CallDispatcher",
    "DispatchResult",
    "DispatchFailure",
    "CallReconciler",
    "ReconcileResult",
    "classify_outcome",
    "ImportContact",
    "ImportSummary",
    "LeadImportService",
    "normalize_phone",
]
