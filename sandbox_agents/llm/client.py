"""
LLM client helpers.

Thin wrapper around an OpenAI-compatible chat model (OpenAI, Azure OpenAI,
or any endpoint set through OPENAI_BASE_URL).
"""

from typing import TypeVar

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.runnables import Runnable
from langchain_openai import ChatOpenAI
from pydantic import BaseModel

from ..config import get_settings

logger = structlog.get_logger()

T = TypeVar("T", bound=BaseModel)


def get_llm(model_type: str = "analysis", temperature: float = 0.3) -> Runnable:
    """
    Chat model configured for JSON-only output.

    ``model_type`` selects the ``OPENAI_MODEL_<TYPE>`` setting.
    """
    settings = get_settings()
    llm = ChatOpenAI(
        model=getattr(settings, f"openai_model_{model_type}"),
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        temperature=temperature,
    )
    return llm.bind(response_format={"type": "json_object"})


def clean_json_response(content: str) -> str:
    """Strip a markdown code fence around a JSON answer."""
    content = content.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else ""
        if content.rstrip().endswith("```"):
            content = content.rstrip()[:-3]
    return content.strip()


async def call_llm_and_parse(
    messages: list[dict],
    output_schema: type[T],
    model_type: str = "analysis",
    temperature: float = 0.3,
    llm: BaseChatModel | Runnable | None = None,
) -> T:
    """
    Call the chat model and validate its JSON answer against ``output_schema``.

    Raises:
        pydantic.ValidationError: the answer is not valid JSON for ``output_schema``
    """
    llm = llm or get_llm(model_type=model_type, temperature=temperature)
    response = await llm.ainvoke(messages)
    content = response.content if isinstance(response.content, str) else str(response.content)
    logger.debug("llm.response", schema=output_schema.__name__, length=len(content))
    return output_schema.model_validate_json(clean_json_response(content))
