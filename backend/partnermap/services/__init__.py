"""Services for the partner map registry."""

from partnermap.services.canonical import resolve_canonical
from partnermap.services.decision_processor import (
    DecisionOutcome,
    DecisionProcessor,
    decision_processor,
)
from partnermap.services.dedup_analyzer import DeduplicationAnalyzer, analyze_batch
from partnermap.services.grouper import CandidateGroup, group_by_key, group_similar
from partnermap.services.similarity import similarity

__all__ = [
    "CandidateGroup",
    "DecisionOutcome",
    "DecisionProcessor",
    "DeduplicationAnalyzer",
    "analyze_batch",
    "decision_processor",
    "group_by_key",
    "group_similar",
    "resolve_canonical",
    "similarity",
]
