"""
LoopFlow services.
"""

from loopflow.services.engine import LoopFlowEngine
from loopflow.services.retrieval import RetrievalService, rank_candidates
from loopflow.services.sharing import SharingService, parse_bundle
from loopflow.services.upgrade import UpgradeService, list_backups

__all__ = [
    "LoopFlowEngine",
    "RetrievalService",
    "UpgradeService",
    "SharingService",
    "parse_bundle",
    "rank_candidates",
    "list_backups",
]
