"""
Automated Pull Request Review Webhook Service

Receives GitHub pull request webhooks, fetches the changed files, asks an
AI model for a structured review and stores the result with per-owner quotas.
"""

__version__ = "0.1.0"

# Configuration
from reviewhook.config import Settings

# Errors
from reviewhook.errors import (
    AIInvocationError,
    AuthenticationError,
    DuplicateDeliveryError,
    NotEnrolledError,
    ParseDegradedWarning,
    PersistenceError,
    QuotaExceededError,
    ReviewhookError,
    UpstreamFetchError,
)

# Response parsing
from reviewhook.parser import ParseResult, ParseSource, parse_response

# Routing
from reviewhook.router import ReviewJob, RouteDecision, route_event
from reviewhook.schemas import AIAnalysis, Issue, Suggestion

# Webhook signatures
from reviewhook.signature import compute_signature, require_signature, verify_signature

__all__ = [
    # Version
    "__version__",
    # Config
    "Settings",
    # Errors
    "ReviewhookError",
    "AuthenticationError",
    "DuplicateDeliveryError",
    "NotEnrolledError",
    "QuotaExceededError",
    "UpstreamFetchError",
    "AIInvocationError",
    "PersistenceError",
    "ParseDegradedWarning",
    # Parsing
    "AIAnalysis",
    "Issue",
    "Suggestion",
    "ParseResult",
    "ParseSource",
    "parse_response",
    # Routing
    "ReviewJob",
    "RouteDecision",
    "route_event",
    # Signatures
    "compute_signature",
    "require_signature",
    "verify_signature",
]
