"""
Content Extractor
=================

Turns the pages crawled for one lead into an ExtractionResult by running the
ordered rule lists over the combined page text, merging Schema.org data,
contact details and categorized snippets of interest.
"""

import logging
from typing import Dict, List, Optional

from leadpipe.common import current_year
from leadpipe.errors import ExtractionError
from leadpipe.models import ExtractionResult, NotableQuote, TeamMember, WebsiteQuality
from leadpipe.scrape import contacts, rules
from leadpipe.scrape.html import extract_blocks, extract_schema_org
from leadpipe.scrape.render import PageContent

# ============================================================================
# Snippets of Interest
# ============================================================================

SNIPPET_CATEGORIES: Dict[str, Dict] = {
    "history": {
        "phrases": [
            "founded in", "established in", "since 19", "since 20", "years in business",
            "years serving", "family owned", "family-owned", "family operated", "generation business",
            "been in business", "our history", "company was founded", "has been serving",
            "have been serving",
        ],
        "max_per_page": 3,
        "min_words": 8,
    },
    "certification": {
        "phrases": [
            "certified by", "certification from", "certified contractor", "accredited by",
            "osha certified", "iso 9001", "leed certified", "nate certified", "epa certified",
            "factory certified", "manufacturer certified", "certified technician", "certified installer",
        ],
        "max_per_page": 3,
        "min_words": 5,
    },
    "award": {
        "phrases": [
            "award winning", "award-winning", "won the award", "received the award", "best of",
            "top rated", "top-rated", "angi super service", "bbb a+", "bbb accredited",
            "voted best", "named best", "recognized as", "excellence award",
        ],
        "reject": ["rewards", "loyalty", "cash back", "earn points", "redeem", "points for every"],
        "max_per_page": 3,
        "min_words": 5,
    },
    "licensing": {
        "phrases": [
            "license #", "license no", "lic #", "licensed contractor", "licensed and bonded",
            "licensed & bonded", "fully licensed", "state licensed", "contractor license",
            "bonded and licensed",
        ],
        "max_per_page": 2,
        "min_words": 4,
    },
    "revenue_scale": {
        "phrases": [
            "million in revenue", "annual revenue", "projects completed", "jobs completed",
            "homes built", "customers served", "clients served", "households served",
            "units managed", "properties managed", "square feet",
        ],
        "max_per_page": 3,
        "min_words": 6,
    },
    "recurring_revenue": {
        "phrases": [
            "maintenance contract", "maintenance agreement", "maintenance plan", "service contract",
            "service agreement", "service plan", "managed services", "monthly service",
            "annual service", "subscription", "retainer", "preventive maintenance", "recurring",
        ],
        "reject": ["cancel anytime", "free trial", "newsletter", "unsubscribe"],
        "max_per_page": 3,
        "min_words": 6,
    },
    "commercial_clients": {
        "phrases": [
            "commercial clients", "commercial customers", "commercial projects", "government contract",
            "municipal", "property management", "general contractor", "homeowners association",
            "fortune 500", "corporate clients", "industrial clients",
        ],
        "max_per_page": 3,
        "min_words": 6,
    },
    "multi_location": {
        "phrases": [
            "locations across", "offices across", "expanded to", "opened our", "regional offices",
            "multiple locations", "multiple offices", "nationwide", "statewide", "locations in",
            "branches in",
        ],
        "reject": ["apply now", "job opening", "career"],
        "max_per_page": 2,
        "min_words": 6,
    },
    "succession": {
        "phrases": [
            "retirement", "retiring", "looking to sell", "ready to sell", "next chapter",
            "succession plan", "transition plan", "passing the torch", "stepping down",
            "exit strategy", "ownership transition",
        ],
        "max_per_page": 2,
        "min_words": 6,
    },
    "proprietary": {
        "phrases": [
            "patented", "patent pending", "proprietary technology", "proprietary process",
            "proprietary system", "proprietary software", "fleet of", "specialized equipment",
            "custom-built", "in-house developed",
        ],
        "max_per_page": 3,
        "min_words": 5,
    },
}

NAV_JUNK = (
    "shop all", "learn more", "read more", "click here", "sign up", "log in", "add to cart",
    "buy now", "view all", "see more", "load more", "skip to content",
)

MAX_NOTABLE_QUOTES = 20


def _is_clean_block(block: str) -> bool:
    words = block.split()
    if sum(1 for w in words if len(w) > 2 and w.isupper()) > 3:
        return False
    lowered = block.lower()
    return not any(junk in lowered for junk in NAV_JUNK)


def extract_snippets(html: str, source_url: str) -> List[NotableQuote]:
    """Categorized sentences worth showing next to a score."""
    blocks = [b for b in extract_blocks(html) if _is_clean_block(b)]
    snippets: List[NotableQuote] = []
    seen = set()

    for category, config in SNIPPET_CATEGORIES.items():
        count = 0
        for block in blocks:
            if count >= config["max_per_page"]:
                break
            lowered = block.lower()
            if len(block.split()) < config["min_words"]:
                continue
            if not any(phrase in lowered for phrase in config["phrases"]):
                continue
            if any(phrase in lowered for phrase in config.get("reject", ())):
                continue
            if lowered in seen:
                continue
            seen.add(lowered)
            snippets.append(NotableQuote(url=source_url, text=block, category=category))
            count += 1

    return snippets


# ============================================================================
# Website Quality & Red Flags
# ============================================================================

CONTENT_RICH_MIN_PAGES = 4
CONTENT_RICH_MIN_WORDS = 2500
PROFESSIONAL_MIN_PAGES = 2
PROFESSIONAL_MIN_WORDS = 800
THIN_CONTENT_WORDS = 100
STALE_COPYRIGHT_YEARS = 3

RED_FLAG_PHRASES = {
    "lorem ipsum": "Placeholder text (lorem ipsum)",
    "under construction": "Website under construction",
    "coming soon": "Website under construction",
    "this domain is for sale": "Parked domain",
    "buy this domain": "Parked domain",
    "permanently closed": "Business may be closed",
    "we have closed": "Business may be closed",
}


def assess_website_quality(pages: List[PageContent]) -> WebsiteQuality:
    words = sum(len(page.text.split()) for page in pages)
    if not pages or words == 0:
        return WebsiteQuality.NONE
    if len(pages) >= CONTENT_RICH_MIN_PAGES and words >= CONTENT_RICH_MIN_WORDS:
        return WebsiteQuality.CONTENT_RICH
    if len(pages) >= PROFESSIONAL_MIN_PAGES and words >= PROFESSIONAL_MIN_WORDS:
        return WebsiteQuality.PROFESSIONAL
    return WebsiteQuality.TEMPLATE_BASIC


def find_red_flags(text: str, copyright_year: Optional[int]) -> List[str]:
    flags: List[str] = []
    lowered = text.lower()
    for phrase, flag in RED_FLAG_PHRASES.items():
        if phrase in lowered and flag not in flags:
            flags.append(flag)
    if copyright_year and copyright_year < current_year() - STALE_COPYRIGHT_YEARS:
        flags.append(f"Stale copyright year ({copyright_year})")
    if len(text.split()) < THIN_CONTENT_WORDS:
        flags.append("Minimal website content")
    return flags


# ============================================================================
# Extractor
# ============================================================================


def _value(rule_list, text, default):
    result = rules.first_match(rule_list, text)
    return result[0] if result is not None else default


class ContentExtractor:
    """Best-effort structured extraction over one lead's crawled pages."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def extract(self, pages: List[PageContent]) -> ExtractionResult:
        """
        Build the ExtractionResult for one lead.

        Raises:
            ExtractionError: none of the pages carries any text
        """
        if not pages:
            raise ExtractionError("no pages to extract from")

        text = "\n".join(page.text for page in pages if page.text)
        if not text.strip():
            raise ExtractionError(f"no text content on {len(pages)} page(s)")

        schema = self._merge_schema(pages)

        founded_year = schema.get("founding_year") or _value(rules.FOUNDED_YEAR_RULES, text, None)
        years_in_business = current_year() - founded_year if founded_year else None

        team = self._team_members(pages)
        owners = list(_value(rules.OWNER_RULES, text, []))
        if schema.get("founder") and rules.is_person_name(schema["founder"]):
            owners.insert(0, schema["founder"])
        owners.extend(
            m.name for m in team
            if m.is_executive and any(t in m.title.lower() for t in ("owner", "founder", "president"))
        )
        owners = rules.dedupe(owners)[:5]

        known_first_names = {name.split()[0].lower() for name in owners + [m.name for m in team]}
        first_names = [
            n for n in _value(rules.FIRST_NAME_CONTACT_RULES, text, []) if n.lower() not in known_first_names
        ]

        client_names = _value(rules.COMMERCIAL_CLIENT_RULES, text, [])
        has_commercial = bool(client_names) or _value(rules.COMMERCIAL_MENTION_RULES, text, False)

        copyright_year = _value(rules.COPYRIGHT_RULES, text, None)
        headcount = schema.get("number_of_employees") or _value(rules.HEADCOUNT_RULES, text, None)
        if headcount is not None and not rules.MIN_HEADCOUNT <= headcount <= rules.MAX_HEADCOUNT:
            headcount = None

        quotes: List[NotableQuote] = []
        for page in pages:
            quotes.extend(extract_snippets(page.html, page.url))

        emails = contacts.extract_emails(text)
        if schema.get("email") and schema["email"].lower() not in emails:
            emails = ([schema["email"].lower()] + emails)[: contacts.MAX_EMAILS]
        phones = contacts.extract_phones(" ".join(filter(None, [schema.get("telephone"), text])))

        all_urls = [page.url for page in pages] + [link for page in pages for link in page.links]

        result = ExtractionResult(
            owner_names=owners,
            first_name_only_contacts=first_names,
            team_members_named=len(team),
            team_member_names=[m.name for m in team],
            years_in_business=years_in_business,
            founded_year=founded_year,
            services=_value(rules.SERVICE_RULES, text, []),
            has_commercial_clients=has_commercial,
            commercial_client_names=client_names,
            certifications=_value(rules.CERTIFICATION_RULES, text, []),
            location_count=_value(rules.LOCATION_RULES, text, 0),
            pricing_signals=_value(rules.PRICING_RULES, text, []),
            copyright_year=copyright_year,
            website_quality=assess_website_quality(pages),
            red_flags=find_red_flags(text, copyright_year),
            testimonial_count=_value(rules.TESTIMONIAL_RULES, text, 0),
            recurring_revenue_signals=_value(rules.RECURRING_REVENUE_RULES, text, []),
            notable_quotes=quotes[:MAX_NOTABLE_QUOTES],
            headcount_estimate=headcount,
            emails=emails,
            phones=phones,
            social=contacts.extract_social_links(
                "\n".join(page.html for page in pages), schema.get("same_as", [])
            ),
            contact_page_url=contacts.find_contact_page(all_urls),
        )

        self.logger.debug(
            f"Extracted {len(pages)} page(s): founded={founded_year} owners={len(owners)} "
            f"team={len(team)} quotes={len(result.notable_quotes)} quality={result.website_quality.value}"
        )
        return result

    def _merge_schema(self, pages: List[PageContent]) -> Dict:
        merged: Dict = {}
        for page in pages:
            data = extract_schema_org(page.html)
            if not data:
                continue
            for key, value in data.items():
                if key == "same_as":
                    merged.setdefault("same_as", []).extend(value)
                else:
                    merged.setdefault(key, value)
        return merged

    def _team_members(self, pages: List[PageContent]) -> List[TeamMember]:
        members: List[TeamMember] = []
        for page in pages:
            members.extend(rules.extract_team_members(page.text, page.url))
        return rules.dedupe_team_members(members)
