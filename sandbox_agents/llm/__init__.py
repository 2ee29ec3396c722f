from .schemas import (
    AnalysisMetadata,
    AnalysisResult,
    EpicAnalysis,
    FeatureAnalysis,
    TaskAnalysis,
    UserStoryAnalysis,
)

__all__ = [
    "AnalysisMetadata",
    "AnalysisResult",
    "EpicAnalysis",
    "FeatureAnalysis",
    "TaskAnalysis",
    "UserStoryAnalysis",
]
