"""Traffic generation and outcome classification engine."""

from .bootstrap import ScenarioBootstrapper
from .classifier import OutcomeClassifier
from .client import ServiceClient, build_http_client, try_parse
from .errors import PixloadError, SetupFailure
from .iteration import TransferIteration
from .load import (
    FixedPoolShape,
    LoadController,
    LoadShape,
    LoadStage,
    LoadStats,
    RampingShape,
    RampProfile,
    WorkerPool,
)
from .metrics import MetricsRecorder, Threshold, evaluate_thresholds, parse_thresholds
from .models import (
    CreationOutcome,
    OutcomeCategory,
    ScenarioContext,
    TransferCreated,
    TransferFailed,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)
from .sampler import SampleLimiter
from .transfers import TransferRequestBuilder, WebhookConfirmer

__all__ = [
    "CreationOutcome",
    "FixedPoolShape",
    "LoadController",
    "LoadShape",
    "LoadStage",
    "LoadStats",
    "MetricsRecorder",
    "OutcomeCategory",
    "OutcomeClassifier",
    "PixloadError",
    "RampProfile",
    "RampingShape",
    "SampleLimiter",
    "ScenarioBootstrapper",
    "ScenarioContext",
    "ServiceClient",
    "SetupFailure",
    "Threshold",
    "TransferCreated",
    "TransferFailed",
    "TransferIteration",
    "TransferRequest",
    "TransferRequestBuilder",
    "TransferResult",
    "WebhookConfirmer",
    "WebhookEvent",
    "WorkerPool",
    "build_http_client",
    "evaluate_thresholds",
    "parse_thresholds",
    "try_parse",
]
