"""Global manifest: the exact facts every section must agree with."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class GlobalManifest(BaseModel):
    """Key facts and numeric values distilled from gathered evidence.

    Created once after execution and read-only afterwards. Used as the
    consistency oracle for synthesis, re-rolls and contradiction checks;
    never shown to the reader directly.
    """

    key_facts: list[str] = Field(default_factory=list)
    numerics: dict[str, str] = Field(default_factory=dict)
    sources: list[str] = Field(default_factory=list)
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_empty(self) -> bool:
        return not self.key_facts and not self.numerics

    def to_prompt_block(self) -> str:
        """Render the manifest as a prompt section."""
        if self.is_empty:
            return ""
        lines = ["## GLOBAL FACTS (use these exact values in every section)"]
        if self.key_facts:
            lines.append("### Key Facts")
            lines.extend(f"- {fact}" for fact in self.key_facts)
        if self.numerics:
            lines.append("### Exact Values")
            lines.extend(f"- {name}: {value}" for name, value in self.numerics.items())
        if self.sources:
            lines.append("### Sources")
            lines.extend(f"- {source}" for source in self.sources[:10])
        return "\n".join(lines)
