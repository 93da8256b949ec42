"""Synthesis document models.

``SynthesisOutput`` is the document under repair. Stages that change it
return a new copy (``model_copy(update=...)``) so that the previous version
stays intact for the regression guard.
"""

from typing import Optional

from pydantic import BaseModel, Field

OVERVIEW_SECTION = "overview"
GLOBAL_SECTION = "global"


class SubQuestionAnswer(BaseModel):
    """Answer to one sub-question."""

    question: str
    answer: str = Field(default="")


class SynthesisOutput(BaseModel):
    """Structured answer: overview, per-sub-question answers, insights.

    Sub-question ids are ``q1``, ``q2``, ... in the order the questions
    were supplied.
    """

    overview: str = Field(default="")
    sub_questions: dict[str, SubQuestionAnswer] = Field(default_factory=dict)
    additional_insights: Optional[str] = Field(default=None)

    def section_ids(self) -> list[str]:
        return [OVERVIEW_SECTION, *self.sub_questions.keys()]

    def get_section(self, section_id: str) -> Optional[str]:
        """Text of a section, or None when the id is unknown."""
        if section_id == OVERVIEW_SECTION:
            return self.overview
        entry = self.sub_questions.get(section_id)
        return entry.answer if entry else None

    def with_section(self, section_id: str, text: str) -> "SynthesisOutput":
        """Return a copy with one section replaced.

        Unknown section ids leave the document unchanged.
        """
        if section_id == OVERVIEW_SECTION:
            return self.model_copy(update={"overview": text})
        entry = self.sub_questions.get(section_id)
        if entry is None:
            return self
        updated = dict(self.sub_questions)
        updated[section_id] = SubQuestionAnswer(question=entry.question, answer=text)
        return self.model_copy(update={"sub_questions": updated})

    def to_text(self) -> str:
        """Flatten to markdown with ``## Q1: ...`` headers for critique prompts."""
        parts = [self.overview]
        for section_id, entry in self.sub_questions.items():
            parts.append(f"## {section_id.upper()}: {entry.question}\n\n{entry.answer}")
        if self.additional_insights:
            parts.append(f"## Additional Insights\n\n{self.additional_insights}")
        return "\n\n".join(p for p in parts if p)
