"""
Client library for the PreSocial API with optimistic vote and bookmark state.
"""

from .social_client import APIError, SocialClient
from .reconciler import (
    BookmarkReconciler,
    OptimisticTransaction,
    ReconcileError,
    SessionState,
    VoteReconciler,
    score_delta,
)

__all__ = [
    "APIError",
    "SocialClient",
    "BookmarkReconciler",
    "OptimisticTransaction",
    "ReconcileError",
    "SessionState",
    "VoteReconciler",
    "score_delta",
]
