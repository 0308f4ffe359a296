"""
LLM Classifier
==============

Turns a lead's extracted facts plus its market context into a validated
ScoringResult through an OpenAI-compatible chat completion (OpenRouter).

Response handling:
1. json.loads on the raw completion
2. the outermost {...} block of the completion
3. one repair round trip asking the model to fix its own JSON
4. jsonschema validation of the shape, then pydantic validation of the values

Anything that still fails raises ClassifierError; retries are the caller's
concern.
"""

import asyncio
import hashlib
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from jsonschema import Draft202012Validator
from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from leadpipe.common import ErrorCode
from leadpipe.config import PipelineSettings
from leadpipe.errors import ClassifierError
from leadpipe.models import ExtractionResult, Lead, ScoringResult, SupportingEvidence
from leadpipe.scoring.prompts import build_repair_prompt

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

RESPONSE_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": [
        "ownership_type",
        "is_excluded",
        "business_quality_score",
        "sell_likelihood_score",
        "rationale",
    ],
    "properties": {
        "controlling_owner": {"type": ["string", "null"]},
        "ownership_type": {"type": "string", "minLength": 1},
        "is_excluded": {"type": "boolean"},
        "exclusion_reason": {"type": ["string", "null"]},
        "business_quality_score": {"type": "number"},
        "sell_likelihood_score": {"type": "number"},
        "rationale": {"type": "string", "minLength": 1},
    },
}

_VALIDATOR = Draft202012Validator(RESPONSE_SCHEMA)


# ============================================================================
# Prompt Inputs
# ============================================================================


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def build_facts_summary(facts: ExtractionResult) -> str:
    """Render an ExtractionResult as the terse fact sheet the prompt expects."""
    lines = []

    first_names = '", "'.join(facts.first_name_only_contacts)
    if facts.owner_names:
        line = f"Owner: {', '.join(facts.owner_names)} (full name)."
        if facts.first_name_only_contacts:
            line += f' Also "{first_names}" (first name only).'
        lines.append(line)
    elif facts.first_name_only_contacts:
        lines.append(f'Owner: Unknown. First-name-only contacts: "{first_names}".')
    else:
        lines.append("Owner: Not identified.")

    if facts.team_members_named > 0:
        line = f"Team: {_plural(facts.team_members_named, 'named member')}"
        if facts.team_member_names:
            line += f" ({', '.join(facts.team_member_names)})"
        lines.append(line + ".")
    else:
        lines.append("Team: No named team members.")

    if facts.years_in_business is not None:
        line = f"Years: {facts.years_in_business} years in business"
        if facts.founded_year:
            line += f" (founded {facts.founded_year})"
        lines.append(line + ".")
    elif facts.founded_year is not None:
        lines.append(f"Founded: {facts.founded_year}.")
    else:
        lines.append("Years: Not stated.")

    if facts.services:
        lines.append(f"Services: {', '.join(facts.services)} ({_plural(len(facts.services), 'line')}).")
    else:
        lines.append("Services: None listed.")

    if facts.has_commercial_clients:
        line = "Clients: Commercial"
        if facts.commercial_client_names:
            line += f": {', '.join(facts.commercial_client_names)}"
        lines.append(line + ".")
    else:
        lines.append("Clients: Residential only, no commercial mentions.")

    lines.append(f"Certs: {', '.join(facts.certifications)}." if facts.certifications else "Certs: None.")
    lines.append(f"Locations: {facts.location_count or 1}.")
    lines.append(
        f"Pricing: {', '.join(facts.pricing_signals)}." if facts.pricing_signals else "Pricing: No signals."
    )

    line = f"Website: {facts.website_quality.value}."
    if facts.red_flags:
        line += f" Red flags: {'; '.join(facts.red_flags)}."
    lines.append(line)

    if facts.copyright_year is not None:
        lines.append(f"Copyright year: {facts.copyright_year}.")

    if facts.testimonial_count > 0:
        lines.append(f"Testimonials: {facts.testimonial_count} on site.")
    else:
        lines.append("Testimonials: None on site.")

    if facts.recurring_revenue_signals:
        lines.append(f"Recurring revenue: {', '.join(facts.recurring_revenue_signals)}.")
    else:
        lines.append("Recurring revenue: None.")

    return "\n".join(lines)


def build_lead_context(lead: Lead, facts: ExtractionResult) -> str:
    """Lead row fields plus scraped contact details, as pretty JSON."""
    return json.dumps(
        {
            "name": lead.name,
            "business_type": lead.business_type,
            "website": lead.website,
            "rating": lead.rating,
            "review_count": lead.review_count,
            "headcount_estimate": facts.headcount_estimate,
            "emails": facts.emails,
            "phones": facts.phones,
            "social": facts.social,
            "contact_page_url": facts.contact_page_url,
        },
        indent=2,
    )


def evidence_from_quotes(facts: ExtractionResult) -> List[SupportingEvidence]:
    """Verbatim page quotes become the result's supporting evidence."""
    return [SupportingEvidence(url=q.url, snippet=q.text) for q in facts.notable_quotes]


# ============================================================================
# Classifier
# ============================================================================


@dataclass
class Classification:
    result: ScoringResult
    model_used: str
    prompt_fingerprint: str
    repaired: bool = False


class LLMClassifier:
    """Scores one prompt with a primary model, falling back to a second one."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        fallback_model: Optional[str] = None,
        timeout: float = 60.0,
        max_tokens: int = 1024,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.primary_model = model
        self.fallback_model = fallback_model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: PipelineSettings, logger: Optional[logging.Logger] = None) -> "LLMClassifier":
        if not settings.openrouter_api_key:
            raise RuntimeError("OPENROUTER_API_KEY must be set to run scoring")

        client = AsyncOpenAI(api_key=settings.openrouter_api_key, base_url=settings.openrouter_base_url)
        return cls(
            client,
            model=settings.classifier_model,
            fallback_model=settings.classifier_fallback_model,
            timeout=settings.classifier_timeout,
            logger=logger,
        )

    async def _create(self, model: str, prompt: str) -> str:
        response = await asyncio.wait_for(
            self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.0,
                max_tokens=self.max_tokens,
            ),
            timeout=self.timeout,
        )
        if not response.choices:
            raise ClassifierError(f"{model} returned no choices")
        return (response.choices[0].message.content or "").strip()

    async def complete(self, prompt: str) -> Tuple[str, str]:
        """
        Run one chat completion.

        Returns:
            (content, model_used)

        Raises:
            ClassifierError: both models failed or timed out
        """
        try:
            return await self._create(self.primary_model, prompt), self.primary_model
        except (OpenAIError, asyncio.TimeoutError) as e:
            if not self.fallback_model:
                raise ClassifierError(f"{self.primary_model} failed: {type(e).__name__}: {e}") from e
            self.logger.warning(f"🔄 {self.primary_model} failed ({type(e).__name__}), trying {self.fallback_model}")

        try:
            return await self._create(self.fallback_model, prompt), self.fallback_model
        except (OpenAIError, asyncio.TimeoutError) as e:
            raise ClassifierError(f"{self.fallback_model} failed: {type(e).__name__}: {e}") from e

    async def _parse(self, text: str) -> Tuple[Any, bool]:
        """Decode the completion, repairing it through the model once if needed."""
        try:
            return json.loads(text), False
        except json.JSONDecodeError as e:
            broken, error = text, str(e)

        match = _JSON_OBJECT.search(text)
        if match:
            try:
                return json.loads(match.group(0)), False
            except json.JSONDecodeError as e:
                broken, error = match.group(0), str(e)

        self.logger.warning(f"⚠️ JSON repair needed: {error}")
        repaired, _ = await self.complete(build_repair_prompt(broken, error))
        try:
            return json.loads(repaired), True
        except json.JSONDecodeError:
            pass

        match = _JSON_OBJECT.search(repaired)
        if match:
            try:
                return json.loads(match.group(0)), True
            except json.JSONDecodeError:
                pass
        raise ClassifierError(f"JSON repair failed: {repaired[:200]}", code=ErrorCode.PARSE_ERROR)

    @staticmethod
    def validate(payload: Any, evidence: Sequence[SupportingEvidence] = ()) -> ScoringResult:
        """
        Validate a decoded response.

        Raises:
            ClassifierError: the payload is not a ScoringResult
        """
        errors = sorted(_VALIDATOR.iter_errors(payload), key=lambda err: list(err.path))
        if errors:
            first = errors[0]
            where = ".".join(str(p) for p in first.path) or "response"
            raise ClassifierError(f"invalid classifier response at {where}: {first.message}", code=ErrorCode.PARSE_ERROR)

        try:
            return ScoringResult.model_validate({**payload, "supporting_evidence": list(evidence)})
        except ValidationError as e:
            detail = e.errors()[0]
            where = ".".join(str(p) for p in detail["loc"]) or "response"
            raise ClassifierError(f"invalid classifier response at {where}: {detail['msg']}", code=ErrorCode.PARSE_ERROR) from e

    async def classify(self, prompt: str, evidence: Sequence[SupportingEvidence] = ()) -> Classification:
        fingerprint = hashlib.sha256(prompt.encode()).hexdigest()
        text, model_used = await self.complete(prompt)
        payload, repaired = await self._parse(text)
        result = self.validate(payload, evidence)
        return Classification(result=result, model_used=model_used, prompt_fingerprint=fingerprint, repaired=repaired)
