"""Review reconciliation for AI-assisted PR standards checks."""

from .analysis import APPROVED, BLOCK_MERGE, FirstReview, ReReview, parse_analysis
from .config import CheckerConfig, ConfigError, load_config
from .diff_anchors import resolve_anchors
from .findings import Finding, MalformedAnalysisError, ThreadRef, norm_title
from .matcher import match_thread
from .reconcile import ReconciliationOutcome, reconcile
from .threads import Thread, build_thread_index

__all__ = [
    "APPROVED",
    "BLOCK_MERGE",
    "CheckerConfig",
    "ConfigError",
    "Finding",
    "FirstReview",
    "MalformedAnalysisError",
    "ReReview",
    "ReconciliationOutcome",
    "Thread",
    "ThreadRef",
    "build_thread_index",
    "load_config",
    "match_thread",
    "norm_title",
    "parse_analysis",
    "reconcile",
    "resolve_anchors",
]
