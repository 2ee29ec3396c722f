"""
Analysis result schema.

Epic → Feature → UserStory → Task tree produced by both the sandbox
(ANALYZE_REPOSITORY) and the direct LLM fallback. Wire names are camelCase;
snake_case field names are accepted too.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Frozen(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ==============================================
# Work item tree
# ==============================================
class TaskAnalysis(_Frozen):
    """Task with complexity assessment"""
    title: str = Field(description="Task title")
    description: str = Field(default="", description="Task description")
    complexity: Literal["Simple", "Medium", "Complex"] = Field(
        default="Medium", description="Simple, Medium or Complex"
    )


class UserStoryAnalysis(_Frozen):
    """User story with tasks"""
    title: str = Field(description="As a [user], I want [goal] so that [benefit]")
    description: str = Field(default="")
    acceptance_criteria: str = Field(default="", description="Comma separated criteria")
    tasks: tuple[TaskAnalysis, ...] = Field(default=())


class FeatureAnalysis(_Frozen):
    """Feature with user stories"""
    title: str
    description: str = ""
    user_stories: tuple[UserStoryAnalysis, ...] = Field(default=())


class EpicAnalysis(_Frozen):
    """Epic with features"""
    title: str
    description: str = ""
    features: tuple[FeatureAnalysis, ...] = Field(default=())


class AnalysisMetadata(_Frozen):
    analysis_timestamp: str = ""
    model: str = ""
    reasoning: str = ""


class AnalysisResult(_Frozen):
    """Result of one repository analysis"""
    reasoning: str = Field(default="", description="Brief explanation of the analysis approach")
    epics: tuple[EpicAnalysis, ...] = Field(default=())
    metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)

    @property
    def epic_count(self) -> int:
        return len(self.epics)

    def to_wire(self) -> dict:
        """Serialize with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
