"""Cross-section consistency verification (parallel-verify-resolve).

Phased synthesis writes sub-answers independently, so they can disagree
with the overview or with each other. PVR extracts atomic claims per
section, asks a model to find contradicting claim pairs (the global
manifest is the source of truth) and scores the document:

    score = max(0, 1 - weighted_contradictions / claim_pairs)

with weights high 1.0, medium 0.5, low 0.25. A separate check looks for
AND/OR logic-operator conflicts, which always count as high severity.

Sub-answers in high-severity contradictions are re-rolled with the
overview as an immutable anchor; the overview itself is never rewritten
here. Re-verification happens at most once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

from research_synth.core.research.models.enums import ContradictionSeverity, ReasonCode
from research_synth.core.research.models.execution import ExecutionResult
from research_synth.core.research.models.manifest import GlobalManifest
from research_synth.core.research.models.synthesis import OVERVIEW_SECTION, SynthesisOutput
from research_synth.core.research.models.validation import Contradiction, PVRResult
from research_synth.core.research.workflows._json_parsing import parse_structured
from research_synth.core.research.workflows.base import ResearchStageBase
from research_synth.core.research.workflows.synthesis import build_section_evidence

logger = logging.getLogger(__name__)

MIN_SECTIONS_FOR_CHECK = 2
SECTION_CONTENT_CHARS = 2000
CLAIM_MAX_TOKENS = 2000
REROLL_TIMEOUT = 60.0
REROLL_MAX_TOKENS = 8000

SEVERITY_WEIGHTS: dict[ContradictionSeverity, float] = {
    ContradictionSeverity.HIGH: 1.0,
    ContradictionSeverity.MEDIUM: 0.5,
    ContradictionSeverity.LOW: 0.25,
}

_NLI_REASON_CODES = (
    ReasonCode.NUMERIC_CONFLICT,
    ReasonCode.OPPOSITE_RECOMMENDATION,
    ReasonCode.TIME_CONFLICT,
    ReasonCode.COST_CONFLICT,
    ReasonCode.MUTUAL_EXCLUSION,
)

ClaimList = list[tuple[str, str]]


# =============================================================================
# Scoring helpers
# =============================================================================


def normalize_severity(value: Any) -> ContradictionSeverity:
    """Known severities pass through; anything else becomes medium."""
    try:
        return ContradictionSeverity(str(value).strip().lower())
    except ValueError:
        return ContradictionSeverity.MEDIUM


def normalize_reason_code(value: Any) -> Optional[ReasonCode]:
    try:
        return ReasonCode(str(value).strip().upper())
    except ValueError:
        return None


def compute_entailment_score(contradictions: list[Contradiction], claim_count: int) -> float:
    """Share of claim pairs not in (weighted) contradiction, floored at 0."""
    total_pairs = claim_count * (claim_count - 1) / 2
    weighted = sum(SEVERITY_WEIGHTS[c.severity] for c in contradictions)
    return max(0.0, 1.0 - weighted / max(total_pairs, 1))


def select_reroll_sections(
    contradictions: list[Contradiction], valid_sections: set[str]
) -> list[str]:
    """Sections in high-severity contradictions, minus the overview.

    Only ids present in ``valid_sections`` are returned, in first-seen order.
    """
    selected: list[str] = []
    for c in contradictions:
        if c.severity != ContradictionSeverity.HIGH:
            continue
        for section in (c.section_a, c.section_b):
            if section != OVERVIEW_SECTION and section in valid_sections and section not in selected:
                selected.append(section)
    return selected


def flatten_claims(section_claims: dict[str, list[str]]) -> ClaimList:
    return [(section, claim) for section, claims in section_claims.items() for claim in claims]


def _numbered(claims: ClaimList) -> str:
    return "\n".join(f"[{i}] ({section}) {claim}" for i, (section, claim) in enumerate(claims, 1))


# =============================================================================
# Prompts
# =============================================================================


def build_claim_extraction_prompt(section_name: str, content: str, max_claims: int) -> str:
    return f"""Extract ATOMIC CLAIMS from this text section.

Section: {section_name}
Content:
{content[:SECTION_CONTENT_CHARS]}

---

Extract discrete, verifiable claims. Focus on:
1. Numeric values and thresholds (e.g., ">0.80", ">=3", "20 hours")
2. **LOGICAL OPERATORS** - Capture AND/OR/both/either explicitly:
   - "Entity promoted if X OR Y" (OR logic)
   - "Must pass both X AND Y" (AND logic)
3. Conditional relationships (if X then Y, when X occurs)
4. Requirements and gates (must, required, mandatory)
5. Time/cost estimates

**PRESERVE LOGIC OPERATORS in claims:**
- GOOD: "Entity promoted if recurrence >= 3 OR salience > 0.80"
- BAD: "Entity is promoted based on recurrence and salience" (ambiguous)

Return JSON only:
{{
  "claims": [
    "claim preserving exact logic operator",
    "another claim with AND/OR if present"
  ]
}}

Keep claims concise (under 100 chars each). Max {max_claims} claims."""


def build_nli_prompt(claims: ClaimList, manifest: Optional[GlobalManifest]) -> str:
    manifest_context = ""
    if manifest is not None and not manifest.is_empty:
        facts = [f"- {fact}" for fact in manifest.key_facts]
        facts.extend(f"- {name}: {value}" for name, value in manifest.numerics.items())
        manifest_context = "\nGlobal Facts (source of truth):\n" + "\n".join(facts) + "\n"
    codes = "\n".join(f"- {code.value}" for code in _NLI_REASON_CODES)
    return f"""You are a consistency checker. Find CONTRADICTIONS between claims.
{manifest_context}
Claims to check:
{_numbered(claims)}

---

Find pairs that CONTRADICT each other (or contradict the Global Facts) using these reason codes:
{codes}

Return ONLY this JSON structure (no other text):
{{"contradictions":[{{"claimA":1,"claimB":3,"reasonCode":"NUMERIC_CONFLICT","severity":"high"}}]}}

Rules:
- claimA and claimB are claim numbers from the list above
- reasonCode must be one of the codes listed
- severity: "high" (numbers differ), "medium" (approaches differ), "low" (wording)
- If no contradictions: {{"contradictions":[]}}
- NO freeform text in any field - use ONLY the provided codes"""


def build_logic_check_prompt(claims: ClaimList) -> str:
    return f"""You are checking for LOGIC OPERATOR CONFLICTS (AND vs OR).

Claims to check:
{_numbered(claims)}

---

Find claims that use CONFLICTING logic operators for the SAME condition/threshold:

CONFLICT EXAMPLES:
- Claim A: "Entity promoted if X OR Y" vs Claim B: "Must pass both X AND Y"
- Claim A: "Either condition triggers" vs Claim B: "All gates required"

NOT A CONFLICT:
- Different thresholds (0.80 vs 0.85) - that's a numeric difference, not logic
- Same logic with different wording ("X or Y" and "X OR Y")

Return JSON only:
{{
  "hasConflict": true/false,
  "conflicts": [
    {{"claimA": 1, "claimB": 4, "description": "Overview says 'X OR Y' but q2 requires both"}}
  ]
}}

Return an empty conflicts array if no AND/OR logic conflicts are found."""


def build_reroll_prompt(
    question: str,
    current_answer: str,
    overview: str,
    contradictions: list[Contradiction],
    evidence: str,
    manifest: Optional[GlobalManifest],
) -> str:
    conflicts = "\n".join(
        f'- ({c.section_a}) "{c.claim_a}" vs ({c.section_b}) "{c.claim_b}"' for c in contradictions
    )
    manifest_block = manifest.to_prompt_block() if manifest is not None else ""
    return f"""You are rewriting ONE section of a research report to remove contradictions.

**Sub-Question:** {question}

**OVERVIEW (immutable anchor - your answer MUST agree with it):**
{overview}

{manifest_block}

**CONTRADICTIONS TO RESOLVE:**
{conflicts or "- Conflicts with the overview were detected"}

**GATHERED DATA FOR THIS SUB-QUESTION:**
{evidence}

**CURRENT ANSWER:**
{current_answer}

---

**YOUR TASK:**
- Rewrite the answer so that every number, threshold and recommendation matches the overview and the GLOBAL FACTS exactly
- Keep everything that does not conflict
- Keep inline citations ([perplexity:N], [context7:library], [arxiv:id])
- Return ONLY the rewritten answer text, with no headers or commentary"""


# =============================================================================
# Checker
# =============================================================================


class PVRChecker(ResearchStageBase):
    """Verifies cross-section consistency and re-rolls contradicting sections."""

    stage_name = "PVR"

    async def verify(
        self, synthesis: SynthesisOutput, manifest: Optional[GlobalManifest] = None
    ) -> PVRResult:
        """Check a document for cross-section contradictions.

        Fails open: when claims cannot be extracted or the NLI call fails,
        the document counts as consistent.
        """
        start = time.perf_counter()
        if not self.has_llm or not synthesis.sub_questions:
            return PVRResult()

        self.counters.pvr_checks += 1
        section_claims = await self.extract_claims(synthesis)
        with_claims = [s for s, claims in section_claims.items() if claims]
        if len(with_claims) < MIN_SECTIONS_FOR_CHECK:
            logger.info("PVR: insufficient sections for cross-check, skipping")
            return PVRResult(verification_time_ms=_elapsed_ms(start))

        claims = flatten_claims(section_claims)
        logger.info("PVR: verifying %d sections with %d claims", len(with_claims), len(claims))

        score, contradictions = await self._cross_section_nli(claims, manifest)
        threshold = self.config.pipeline.entailment_threshold
        is_consistent = score >= threshold

        logic_conflicts = await self._logic_conflicts(claims)
        if logic_conflicts:
            logger.warning("PVR: %d logic operator conflicts", len(logic_conflicts))
            is_consistent = False
            contradictions.extend(logic_conflicts)

        reroll: list[str] = []
        if not is_consistent:
            reroll = select_reroll_sections(contradictions, set(synthesis.sub_questions))

        result = PVRResult(
            is_consistent=is_consistent,
            entailment_score=score,
            contradictions=contradictions,
            sections_to_reroll=reroll,
            verification_time_ms=_elapsed_ms(start),
        )
        logger.info(
            "PVR: score %.2f, consistent=%s, reroll=%s, %.0fms",
            result.entailment_score,
            result.is_consistent,
            reroll,
            result.verification_time_ms,
        )
        return result

    async def extract_claims(self, synthesis: SynthesisOutput) -> dict[str, list[str]]:
        """Claims per section (overview and every sub-question), in parallel."""
        sections = [(OVERVIEW_SECTION, "Overview", synthesis.overview)]
        sections.extend(
            (sid, entry.question, entry.answer) for sid, entry in synthesis.sub_questions.items()
        )
        results = await asyncio.gather(
            *(self._claims_for(name, content) for _, name, content in sections)
        )
        return {sid: claims for (sid, _, _), claims in zip(sections, results)}

    async def _claims_for(self, name: str, content: str) -> list[str]:
        if not content.strip():
            return []
        limit = self.config.pipeline.max_claims_per_section
        response = await self._generate(
            build_claim_extraction_prompt(name, content, limit),
            self.config.fast_model,
            temperature=0.0,
            timeout=self.config.pipeline.claim_extraction_timeout,
            max_output_tokens=CLAIM_MAX_TOKENS,
        )
        if not response.success:
            return []
        parsed = parse_structured(response.text, {})
        claims = parsed.value.get("claims") if parsed.ok else None
        if not isinstance(claims, list):
            return []
        return [str(c).strip() for c in claims if str(c).strip()][:limit]

    async def _cross_section_nli(
        self, claims: ClaimList, manifest: Optional[GlobalManifest]
    ) -> tuple[float, list[Contradiction]]:
        response = await self._generate(
            build_nli_prompt(claims, manifest),
            self.config.fast_model,
            temperature=0.0,
            timeout=self.config.pipeline.claim_extraction_timeout * 2,
            max_output_tokens=CLAIM_MAX_TOKENS,
        )
        if not response.success:
            logger.warning("PVR: NLI check failed, treating as consistent")
            return 1.0, []

        parsed = parse_structured(response.text, {"contradictions": []})
        raw = parsed.value.get("contradictions", [])
        contradictions = []
        for item in raw if isinstance(raw, list) else []:
            contradiction = _contradiction_from(item, claims)
            if contradiction is not None:
                contradictions.append(contradiction)
        return compute_entailment_score(contradictions, len(claims)), contradictions

    async def _logic_conflicts(self, claims: ClaimList) -> list[Contradiction]:
        response = await self._generate(
            build_logic_check_prompt(claims),
            self.config.fast_model,
            temperature=0.0,
            timeout=self.config.pipeline.claim_extraction_timeout,
            max_output_tokens=CLAIM_MAX_TOKENS,
        )
        if not response.success:
            return []
        parsed = parse_structured(response.text, {})
        if not parsed.ok or parsed.value.get("hasConflict") is not True:
            return []

        raw = parsed.value.get("conflicts") or []
        if isinstance(raw, str):
            raw = [raw]
        conflicts = []
        for item in raw if isinstance(raw, list) else []:
            if isinstance(item, str):
                conflicts.append(
                    Contradiction(
                        section_a=OVERVIEW_SECTION,
                        section_b="sub-question",
                        claim_a=item,
                        claim_b="Logic operator mismatch",
                        severity=ContradictionSeverity.HIGH,
                        reason_code=ReasonCode.LOGIC_CONFLICT,
                    )
                )
                continue
            contradiction = _contradiction_from(item, claims)
            if contradiction is not None:
                conflicts.append(
                    contradiction.model_copy(
                        update={
                            "severity": ContradictionSeverity.HIGH,
                            "reason_code": ReasonCode.LOGIC_CONFLICT,
                            "explanation": str(item.get("description", "")),
                        }
                    )
                )
        return conflicts

    # ------------------------------------------------------------------
    # Re-roll
    # ------------------------------------------------------------------

    async def reroll(
        self,
        synthesis: SynthesisOutput,
        pvr: PVRResult,
        manifest: Optional[GlobalManifest],
        execution: ExecutionResult,
    ) -> SynthesisOutput:
        """Regenerate only the listed sub-answers.

        The overview is passed as an anchor and copied through unchanged.
        A failed regeneration keeps the section's current answer.
        """
        targets = [s for s in pvr.sections_to_reroll if s in synthesis.sub_questions]
        if not targets:
            return synthesis

        logger.info("PVR: re-rolling %s", ", ".join(targets))

        async def one(section_id: str) -> Optional[str]:
            entry = synthesis.sub_questions[section_id]
            related = [c for c in pvr.contradictions if section_id in (c.section_a, c.section_b)]
            response = await self._generate(
                build_reroll_prompt(
                    entry.question,
                    entry.answer,
                    synthesis.overview,
                    related,
                    build_section_evidence(execution, section_id),
                    manifest,
                ),
                self.config.synthesis_model,
                temperature=0.3,
                timeout=REROLL_TIMEOUT,
                max_output_tokens=REROLL_MAX_TOKENS,
            )
            if response.success and response.text.strip():
                return response.text.strip()
            return None

        rewritten = await asyncio.gather(*(one(s) for s in targets))
        updated = synthesis
        for section_id, text in zip(targets, rewritten):
            if text is not None:
                updated = updated.with_section(section_id, text)
                self.counters.sections_rerolled += 1
        return updated

    async def verify_and_reconcile(
        self,
        synthesis: SynthesisOutput,
        manifest: Optional[GlobalManifest],
        execution: ExecutionResult,
    ) -> tuple[SynthesisOutput, PVRResult]:
        """Verify, re-roll contradicting sections, and re-verify once.

        Contradictions that survive the re-roll stay in the returned result.
        """
        result = await self.verify(synthesis, manifest)
        if result.is_consistent or not result.sections_to_reroll:
            return synthesis, result

        rerolled = await self.reroll(synthesis, result, manifest, execution)
        if rerolled is synthesis:
            return synthesis, result

        second = await self.verify(rerolled, manifest)
        if not second.is_consistent:
            logger.warning(
                "PVR: %d contradictions remain after re-roll", len(second.contradictions)
            )
        return rerolled, second.model_copy(update={"rerolled": True})


def _contradiction_from(item: Any, claims: ClaimList) -> Optional[Contradiction]:
    """Build a contradiction from 1-based claim indices; None if invalid."""
    if not isinstance(item, dict):
        return None
    a = item.get("claimA", item.get("claim_a"))
    b = item.get("claimB", item.get("claim_b"))
    if not isinstance(a, int) or not isinstance(b, int):
        return None
    if not (1 <= a <= len(claims) and 1 <= b <= len(claims)):
        return None
    section_a, claim_a = claims[a - 1]
    section_b, claim_b = claims[b - 1]
    return Contradiction(
        section_a=section_a,
        section_b=section_b,
        claim_a=claim_a,
        claim_b=claim_b,
        severity=normalize_severity(item.get("severity")),
        reason_code=normalize_reason_code(item.get("reasonCode", item.get("reason_code"))),
    )


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
