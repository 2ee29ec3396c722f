"""
Repository analysis - remote sandbox first, direct LLM analysis as fallback
"""

from .direct import DirectAnalysisService
from .service import AnalysisReport, Repository, RepositoryAnalysisService, build_repository_summary

__all__ = [
    "AnalysisReport",
    "DirectAnalysisService",
    "Repository",
    "RepositoryAnalysisService",
    "build_repository_summary",
]
