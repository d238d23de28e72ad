"""Public schema exports."""

from .auth import ConnectionStatus, OAuthCallbackQuery, RefreshResult
from .estimate import (
    AnalyzeAudioRequest,
    AnalyzeTextRequest,
    Estimate,
    EstimateOnlyRequest,
    ProjectAnalysis,
)
from .quickbooks import CreateCustomerRequest, CreateEstimateRequest, CustomerInfo

__all__ = [
    "AnalyzeAudioRequest",
    "AnalyzeTextRequest",
    "ConnectionStatus",
    "CreateCustomerRequest",
    "CreateEstimateRequest",
    "CustomerInfo",
    "Estimate",
    "EstimateOnlyRequest",
    "OAuthCallbackQuery",
    "ProjectAnalysis",
    "RefreshResult",
]
