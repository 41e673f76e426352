"""
Prompt assembly for research tasks.

The final prompt sent to a provider is:

    <question prompt with placeholders substituted, trimmed>
    \\n\\n--- SYSTEM CONTEXT & OUTPUT FORMAT (AUTO) ---\\n
    <output contract with task context>
    <web evidence block, when retrieval produced one>

Placeholders are replaced literally in a single pass, so braces in legal
text are safe and a substituted value is never re-expanded. Unknown
placeholders are left as written.

Supported placeholders:
    {economy_name}, {country}, {jurisdiction}  economy name
    {year}                                     batch reporting year (default 2026)
    {as_of_date}                               batch as-of date
    {question_text}                            question text
    {indicator}, {pillar}                      indicator / pillar names
    {group}, {subgroup}                        question group / subgroup names
"""

import logging
import re
from dataclasses import dataclass

from ai_research_engine.config.constants import DEFAULT_REPORTING_YEAR
from ai_research_engine.engine.models import Batch, Economy, Question, QuestionGroup
from ai_research_engine.system_prompts import OutputContract, get_default_contract

logger = logging.getLogger(__name__)

SYSTEM_CONTEXT_SEPARATOR = "\n\n--- SYSTEM CONTEXT & OUTPUT FORMAT (AUTO) ---\n"

AS_OF_DATE_UNSPECIFIED = "Not specified"

PLACEHOLDER_PATTERN = re.compile(r"\{([a-z_]+)\}")


@dataclass(frozen=True)
class PromptContext:
    """
    Values available to prompt placeholders for one task.

    Missing catalogue values are empty strings.
    """

    economy_name: str
    question_text: str
    question_code: str
    answer_type: str
    year: str
    as_of_date: str = ""
    indicator: str = ""
    pillar: str = ""
    group: str = ""
    subgroup: str = ""

    @classmethod
    def build(
        cls,
        economy: Economy,
        question: Question,
        batch: Batch,
        group: QuestionGroup | None = None,
        default_year: int = DEFAULT_REPORTING_YEAR,
    ) -> "PromptContext":
        year = batch.reporting_year if batch.reporting_year else default_year
        return cls(
            economy_name=economy.name,
            question_text=question.question_text,
            question_code=question.question_code,
            answer_type=question.answer_type,
            year=str(year),
            as_of_date=batch.as_of_date or "",
            indicator=group.indicator_name if group else "",
            pillar=group.pillar_name if group else "",
            group=group.group_name if group else "",
            subgroup=group.subgroup_name if group else "",
        )

    def question_values(self) -> dict[str, str]:
        """Placeholder values for question prompts."""
        return {
            "economy_name": self.economy_name,
            "country": self.economy_name,
            "jurisdiction": self.economy_name,
            "year": self.year,
            "as_of_date": self.as_of_date,
            "question_text": self.question_text,
            "indicator": self.indicator,
            "pillar": self.pillar,
            "group": self.group,
            "subgroup": self.subgroup,
        }

    def contract_values(self) -> dict[str, str]:
        """Placeholder values for the output contract."""
        values = self.question_values()
        values.update(
            question_code=self.question_code,
            answer_type=self.answer_type,
            as_of_date_display=self.as_of_date or AS_OF_DATE_UNSPECIFIED,
        )
        return values


def substitute_placeholders(template: str, values: dict[str, str]) -> str:
    """
    Replace ``{name}`` markers with values, leaving unknown markers intact.

    Example:
        >>> substitute_placeholders("{country} in {year} {unknown}",
        ...     {"country": "Kenya", "year": "2026"})
        'Kenya in 2026 {unknown}'
    """

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name in values:
            return values[name]
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def render_question_prompt(prompt_text: str, context: PromptContext) -> str:
    """Substitute placeholders in a question prompt and trim it."""
    return substitute_placeholders(prompt_text, context.question_values()).strip()


def assemble_prompt(
    question_prompt: str,
    context: PromptContext,
    evidence: str = "",
    contract: OutputContract | None = None,
) -> str:
    """
    Build the final prompt for a provider call.

    Args:
        question_prompt: Rendered question prompt (see render_question_prompt)
        context: Task context for the output contract
        evidence: Web evidence block ("" when there is none)
        contract: Output contract, defaults to the bundled labeled template

    Returns:
        Full prompt text
    """
    if contract is None:
        contract = get_default_contract()

    appendix = substitute_placeholders(contract.prompt, context.contract_values())

    return question_prompt + SYSTEM_CONTEXT_SEPARATOR + appendix + evidence
