"""
Prompts for direct repository analysis.
"""

ANALYSIS_SYSTEM_PROMPT = (
    "You are a software architect that analyzes code repositories and generates structured work items. "
    "Always respond with valid JSON only. Your responses must follow the exact structure specified in the prompt. "
    "Do not include any markdown formatting, code blocks, or explanatory text - only return valid JSON."
)

ANALYSIS_PROMPT = """Analyze the following repository '{repository_name}' and generate structured work items.

Repository Content Summary:
{repository_content}

Based on the repository structure, code patterns, and functionality, generate:

1. Epics - Large bodies of work that organize related features
2. Features - Major functionalities that belong to an Epic
3. User Stories - Requirements from the user's perspective with acceptance criteria
4. Tasks - Specific work items with complexity assessment (Simple/Medium/Complex)

Provide your analysis in the following JSON structure:
{{
  "reasoning": "Brief explanation of your analysis approach",
  "epics": [
    {{
      "title": "Epic Title",
      "description": "Epic description",
      "features": [
        {{
          "title": "Feature Title",
          "description": "Feature description",
          "userStories": [
            {{
              "title": "As a [user], I want [goal] so that [benefit]",
              "description": "User story description",
              "acceptanceCriteria": "Criteria 1, Criteria 2, Criteria 3",
              "tasks": [
                {{
                  "title": "Task title",
                  "description": "Task description",
                  "complexity": "Simple|Medium|Complex"
                }}
              ]
            }}
          ]
        }}
      ]
    }}
  ],
  "metadata": {{
    "analysisTimestamp": "{timestamp}",
    "model": "{model}",
    "reasoning": "Why these items were generated"
  }}
}}

Return ONLY valid JSON, no additional text or markdown formatting."""


def get_analysis_prompt(
    repository_content: str,
    repository_name: str,
    timestamp: str,
    model: str,
) -> list[dict]:
    """Build chat messages for one analysis call."""
    return [
        {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": ANALYSIS_PROMPT.format(
                repository_name=repository_name,
                repository_content=repository_content,
                timestamp=timestamp,
                model=model,
            ),
        },
    ]
