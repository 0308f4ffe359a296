import asyncio
import hashlib
import json

import pytest
from openai import OpenAIError

from leadpipe.common import ErrorCode
from leadpipe.config import PipelineSettings
from leadpipe.errors import ClassifierError
from leadpipe.models import ExtractionResult, Lead, NotableQuote, OwnershipType, WebsiteQuality
from leadpipe.scoring.classifier import (
    LLMClassifier,
    build_facts_summary,
    build_lead_context,
    evidence_from_quotes,
)
from leadpipe.scoring.prompts import build_scoring_prompt
from tests.fakes import ScriptedOpenAI

PRIMARY = "openai/gpt-4o-mini"
FALLBACK = "openai/gpt-3.5-turbo"

VALID = {
    "controlling_owner": "John Carter",
    "ownership_type": "family-owned",
    "is_excluded": False,
    "exclusion_reason": None,
    "business_quality_score": 78,
    "sell_likelihood_score": 64,
    "rationale": "Second-generation plumbing contractor with commercial accounts.",
}


def classifier_for(script, fallback=FALLBACK, timeout=1.0):
    client = ScriptedOpenAI(script)
    return LLMClassifier(client, PRIMARY, fallback_model=fallback, timeout=timeout), client


def classify(classifier, prompt="score this lead", evidence=()):
    return asyncio.run(classifier.classify(prompt, evidence))


# ============================================================================
# Prompt inputs
# ============================================================================


def test_facts_summary_for_empty_extraction():
    summary = build_facts_summary(ExtractionResult.empty())
    lines = summary.splitlines()
    assert lines[0] == "Owner: Not identified."
    assert "Team: No named team members." in lines
    assert "Years: Not stated." in lines
    assert "Clients: Residential only, no commercial mentions." in lines
    assert "Locations: 1." in lines
    assert "Website: none. Red flags: No website data available." in lines


def test_facts_summary_for_rich_extraction():
    facts = ExtractionResult(
        owner_names=["John Carter"],
        first_name_only_contacts=["Raul"],
        team_members_named=1,
        team_member_names=["Sarah Lopez"],
        years_in_business=30,
        founded_year=1995,
        services=["drain cleaning", "leak detection"],
        has_commercial_clients=True,
        commercial_client_names=["City of Springfield"],
        location_count=2,
        website_quality=WebsiteQuality.PROFESSIONAL,
        red_flags=[],
        testimonial_count=4,
        recurring_revenue_signals=["annual maintenance"],
    )
    summary = build_facts_summary(facts)

    assert 'Owner: John Carter (full name). Also "Raul" (first name only).' in summary
    assert "Team: 1 named member (Sarah Lopez)." in summary
    assert "Years: 30 years in business (founded 1995)." in summary
    assert "Services: drain cleaning, leak detection (2 lines)." in summary
    assert "Clients: Commercial: City of Springfield." in summary
    assert "Locations: 2." in summary
    assert "Website: professional." in summary
    assert "Testimonials: 4 on site." in summary
    assert "Recurring revenue: annual maintenance." in summary


def test_lead_context_and_prompt_layout():
    lead = Lead(lead_id="l1", place_id="p1", name="Acme Plumbing", business_type="Plumber", review_count=78)
    facts = ExtractionResult(emails=["office@acmeplumbing.com"])
    context = json.loads(build_lead_context(lead, facts))
    assert context["name"] == "Acme Plumbing"
    assert context["emails"] == ["office@acmeplumbing.com"]

    prompt = build_scoring_prompt("FACTS", "## Market Context\n\nMARKET", "LEAD")
    assert prompt.index("## Market Context") < prompt.index("## Extracted Facts\n\nFACTS")
    assert prompt.endswith("## Lead Data\n\nLEAD")
    assert "## Market Context" not in build_scoring_prompt("FACTS", "", "LEAD")


def test_evidence_from_quotes():
    facts = ExtractionResult(
        notable_quotes=[NotableQuote(url="https://acme.com/about", text="Family owned since 1978.", category="history")]
    )
    evidence = evidence_from_quotes(facts)
    assert [(e.url, e.snippet) for e in evidence] == [("https://acme.com/about", "Family owned since 1978.")]


# ============================================================================
# Classification
# ============================================================================


def test_classify_valid_response():
    classifier, client = classifier_for([json.dumps(VALID)])
    classification = classify(classifier, prompt="hello")

    assert classification.result.ownership_type == OwnershipType.FAMILY_OWNED
    assert classification.model_used == PRIMARY
    assert classification.repaired is False
    assert classification.prompt_fingerprint == hashlib.sha256(b"hello").hexdigest()
    assert client.requests[0]["temperature"] == 0.0


def test_json_is_extracted_from_surrounding_text():
    classifier, client = classifier_for([f"Here is the result:\n```json\n{json.dumps(VALID)}\n```"])
    classification = classify(classifier)
    assert classification.result.business_quality_score == 78
    assert len(client.requests) == 1


def test_broken_json_is_repaired_once():
    broken = json.dumps(VALID)[:-1]
    classifier, client = classifier_for([broken, json.dumps(VALID)])
    classification = classify(classifier)

    assert classification.repaired is True
    assert len(client.requests) == 2
    assert broken in client.requests[1]["messages"][0]["content"]


def test_failed_repair_raises_parse_error():
    classifier, _ = classifier_for(["not json at all", "still not json"])
    with pytest.raises(ClassifierError) as info:
        classify(classifier)
    assert info.value.code == ErrorCode.PARSE_ERROR


def test_fallback_model_on_provider_error():
    classifier, client = classifier_for([OpenAIError("rate limited"), json.dumps(VALID)])
    classification = classify(classifier)
    assert classification.model_used == FALLBACK
    assert client.models_called == [PRIMARY, FALLBACK]


def test_both_models_failing_raises():
    classifier, _ = classifier_for([OpenAIError("down"), OpenAIError("also down")])
    with pytest.raises(ClassifierError) as info:
        classify(classifier)
    assert info.value.code == ErrorCode.CLASSIFIER_ERROR


def test_no_fallback_configured():
    classifier, client = classifier_for([OpenAIError("down")], fallback=None)
    with pytest.raises(ClassifierError):
        classify(classifier)
    assert client.models_called == [PRIMARY]


def test_timeout_falls_back():
    class SlowPrimary:
        def __init__(self, inner):
            self.inner = inner

        async def create(self, **kwargs):
            if kwargs["model"] == PRIMARY:
                await asyncio.sleep(1)
            return await self.inner.create(**kwargs)

    client = ScriptedOpenAI([json.dumps(VALID)])
    client.chat.completions = SlowPrimary(client.chat.completions)
    classifier = LLMClassifier(client, PRIMARY, fallback_model=FALLBACK, timeout=0.05)

    assert classify(classifier).model_used == FALLBACK


def test_missing_field_fails_validation():
    payload = dict(VALID)
    del payload["rationale"]
    classifier, _ = classifier_for([json.dumps(payload)])
    with pytest.raises(ClassifierError) as info:
        classify(classifier)
    assert "rationale" in str(info.value)
    assert info.value.code == ErrorCode.PARSE_ERROR


def test_wrong_types_fail_validation():
    with pytest.raises(ClassifierError):
        LLMClassifier.validate({**VALID, "is_excluded": "no"})
    with pytest.raises(ClassifierError):
        LLMClassifier.validate({**VALID, "ownership_type": "sole proprietor"})
    with pytest.raises(ClassifierError):
        LLMClassifier.validate(["not", "an", "object"])


def test_out_of_range_scores_are_clamped_and_evidence_attached():
    facts = ExtractionResult(notable_quotes=[NotableQuote(url="https://acme.com", text="Since 1978.")])
    result = LLMClassifier.validate({**VALID, "sell_likelihood_score": 140}, evidence_from_quotes(facts))
    assert result.sell_likelihood_score == 100.0
    assert result.supporting_evidence[0].snippet == "Since 1978."


def test_from_settings_requires_api_key():
    with pytest.raises(RuntimeError):
        LLMClassifier.from_settings(PipelineSettings(openrouter_api_key=None))
