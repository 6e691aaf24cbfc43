"""ERC-8004 feedback authorization: issuance, acquisition and settlement."""

from feedback_auth.config import Settings
from feedback_auth.context import ChainContext
from feedback_auth.errors import (
    ConfigurationError,
    FeedbackAuthError,
    OnChainRejection,
    ProtocolError,
    ResolutionError,
    UpstreamError,
    UpstreamTimeout,
    ValidationError,
)
from feedback_auth.evidence import Evidence, EvidenceStore
from feedback_auth.identity import IdentityResolver
from feedback_auth.issuer import FeedbackAuthIssuer
from feedback_auth.models import (
    AgentIdentity,
    FeedbackAuthorization,
    FeedbackEntry,
    FeedbackRecord,
    ReputationSummary,
    RequestedAuthorization,
    SettlementResult,
    SettlementStatus,
)
from feedback_auth.reputation import ReputationReader
from feedback_auth.requester import FEEDBACK_SKILL_ID, FeedbackAuthRequester, extract_token
from feedback_auth.settlement import SettlementSubmitter, score_from_rating


__all__ = [
    'AgentIdentity',
    'ChainContext',
    'ConfigurationError',
    'Evidence',
    'EvidenceStore',
    'FEEDBACK_SKILL_ID',
    'FeedbackAuthError',
    'FeedbackAuthIssuer',
    'FeedbackAuthRequester',
    'FeedbackAuthorization',
    'FeedbackEntry',
    'FeedbackRecord',
    'IdentityResolver',
    'OnChainRejection',
    'ProtocolError',
    'ReputationReader',
    'ReputationSummary',
    'RequestedAuthorization',
    'ResolutionError',
    'Settings',
    'SettlementResult',
    'SettlementStatus',
    'SettlementSubmitter',
    'UpstreamError',
    'UpstreamTimeout',
    'ValidationError',
    'extract_token',
    'score_from_rating',
]
