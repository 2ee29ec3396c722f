"""
Direct (local) repository analysis.

One chat-completion call, no sandbox involved. Used when the remote path is
disabled or its infrastructure is unavailable.
"""

from datetime import UTC, datetime

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.runnables import Runnable
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..errors import AnalysisNotConfigured, RepositoryAnalysisFailed
from ..llm.client import call_llm_and_parse
from ..llm.prompts import get_analysis_prompt
from ..llm.schemas import AnalysisResult

logger = structlog.get_logger()


class DirectAnalysisService:
    """Analyze repository content with a single LLM call."""

    def __init__(
        self,
        settings: Settings | None = None,
        llm: BaseChatModel | Runnable | None = None,
    ):
        self.settings = settings or get_settings()
        self._llm = llm

    async def analyze(self, repository_content: str, repository_name: str) -> AnalysisResult:
        if self._llm is None and not self.settings.openai_api_key:
            logger.error("direct_analysis.no_api_key", msg="OPENAI_API_KEY is required")
            raise AnalysisNotConfigured(
                "LLM API key is not configured. Please set OPENAI_API_KEY environment variable."
            )

        model = self.settings.openai_model_analysis
        messages = get_analysis_prompt(
            repository_content,
            repository_name,
            timestamp=datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            model=model,
        )

        logger.info("direct_analysis.start", repository=repository_name, model=model)
        try:
            result = await call_llm_and_parse(
                messages=messages,
                output_schema=AnalysisResult,
                model_type="analysis",
                temperature=0.3,
                llm=self._llm,
            )
        except ValidationError as e:
            logger.error("direct_analysis.parse_failed", repository=repository_name, error=str(e))
            raise RepositoryAnalysisFailed(
                "Failed to parse AI response as structured JSON", repository_name
            ) from e

        logger.info(
            "direct_analysis.complete",
            repository=repository_name,
            model=model,
            epic_count=result.epic_count,
        )
        return result
