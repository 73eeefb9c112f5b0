import json
import logging
from dataclasses import dataclass, fields, replace
from typing import Optional

logger = logging.getLogger(__name__)


MAP_TEMPLATE = """Write a concise summary of the following part of a video transcript. Keep every key fact, name and number.

"{text}"

CONCISE SUMMARY:"""


SUMMARY_TEMPLATE = """
Task: As an expert content analyzer, create a comprehensive summary and Q&A set for the following YouTube video transcript.

### Transcript to Analyze:
{text}

Please provide your analysis in the following structured format:

## Summary:
[Create a clear, well-organized summary of the main points and key insights from the video]

## Example Questions and Answers:
1. **Question:** [Specific, detailed question about a key point]
   **Answer:** [Clear, accurate answer based on the transcript]

2. **Question:** [Specific, detailed question about another important aspect]
   **Answer:** [Clear, accurate answer based on the transcript]

3. **Question:** [Specific, detailed question about unique insights]
   **Answer:** [Clear, accurate answer based on the transcript]

Guidelines:
- Focus on factual content and valuable insights
- Make questions specific and detailed
- Format output in clean Markdown
- Maintain professional, objective tone
- Include the most important and interesting information
"""


SAFE_SUMMARY_TEMPLATE = """
Task: Create an academic summary and educational Q&A for the following video transcript.

### Content to Analyze:
{text}

Please provide:

## Key Points Summary:
[Present main educational points and insights]

## Learning Questions:
1. **Study Question:** [Educational question about main concept]
   **Key Learning:** [Educational answer focusing on facts]

2. **Study Question:** [Educational question about key details]
   **Key Learning:** [Educational answer focusing on facts]

3. **Study Question:** [Educational question about a practical takeaway]
   **Key Learning:** [Educational answer focusing on facts]

Guidelines:
- Focus on educational value
- Use academic language
- Maintain objective tone
- Format in clear Markdown
- Emphasize factual content
"""


@dataclass(frozen=True)
class PromptTemplates:
    map: str = MAP_TEMPLATE
    summary: str = SUMMARY_TEMPLATE
    safe_summary: str = SAFE_SUMMARY_TEMPLATE

    def get(self, name: str) -> str:
        if name not in {f.name for f in fields(self)}:
            raise KeyError(f"unknown prompt template: {name}")
        return str(getattr(self, name))

    def render(self, name: str, text: str) -> str:
        # str.replace keeps literal braces in templates intact
        return self.get(name).replace("{text}", text)


def load_templates(path: Optional[str] = None) -> PromptTemplates:
    """Default templates, overridden by any keys present in a JSON file."""
    base = PromptTemplates()
    if not path:
        return base

    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Failed to load prompt templates from %s: %s", path, e)
        return base

    if not isinstance(obj, dict):
        logger.warning("Prompt template file %s is not a JSON object", path)
        return base

    known = {f.name for f in fields(PromptTemplates)}
    overrides = {
        k: str(v)
        for k, v in obj.items()
        if k in known and isinstance(v, str) and "{text}" in v
    }
    ignored = sorted(set(obj) - set(overrides))
    if ignored:
        logger.warning("Ignoring prompt template keys: %s", ", ".join(ignored))
    return replace(base, **overrides)
