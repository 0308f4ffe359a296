"""
Heuristic field rules over extracted page text.

Every rule is a pure function `(text) -> Optional[(value, snippet)]`. Rules
for one field live in an ordered list and are composed first-match-wins by
first_match(); the snippet is the matched source text, kept for evidence.
"""

import re
from collections import Counter
from typing import Any, Callable, List, Optional, Sequence, Tuple

from leadpipe.common import current_year
from leadpipe.models import TeamMember

RuleResult = Optional[Tuple[Any, str]]
Rule = Callable[[str], RuleResult]

MIN_FOUNDED_YEAR = 1800
MAX_YEARS_CLAIMED = 200
MIN_HEADCOUNT = 2
MAX_HEADCOUNT = 10000
MAX_TEAM_MEMBERS = 25
MAX_LIST_ITEMS = 15


def first_match(rules: Sequence[Rule], text: str) -> RuleResult:
    """Apply rules in order and return the first hit."""
    if not text:
        return None
    for rule in rules:
        result = rule(text)
        if result is not None:
            return result
    return None


def _valid_year(year: int) -> bool:
    return MIN_FOUNDED_YEAR <= year <= current_year()


def dedupe(items, key=str.lower) -> List[str]:
    seen = set()
    result = []
    for item in items:
        marker = key(item)
        if marker not in seen:
            seen.add(marker)
            result.append(item)
    return result


def _split_list(fragment: str) -> List[str]:
    parts = re.split(r",|;|/|\s+and\s+|\s+&\s+|\s+or\s+", fragment)
    return [p.strip(" -:\t\"'") for p in parts if p.strip(" -:\t\"'")]


# ============================================================================
# Founded Year
# ============================================================================

_FOUNDED_IN = re.compile(r"\b(?:founded|established|est\.|started)\s+(?:in\s+)?(\d{4})\b", re.IGNORECASE)
_YEARS_IN_BUSINESS = re.compile(
    r"\b(\d{1,3})\+?\s+years?\s+(?:in business|of business|of service|serving|in the industry)\b",
    re.IGNORECASE,
)
_SERVING_FOR = re.compile(
    r"\b(?:serving|in business|operating)\b[^.!?]{0,60}?\bfor\s+(?:over\s+|more than\s+|nearly\s+)?(\d{1,3})\+?\s+years\b",
    re.IGNORECASE,
)
_ANNIVERSARY = re.compile(r"\b(\d{1,3})(?:st|nd|rd|th)\s+anniversary\b", re.IGNORECASE)
_FAMILY_OWNED_SINCE = re.compile(
    r"\bfamily[- ]owned(?:\s+(?:and|&)\s+operated)?\s+since\s+(\d{4})\b", re.IGNORECASE
)


def founded_in(text: str) -> RuleResult:
    for match in _FOUNDED_IN.finditer(text):
        year = int(match.group(1))
        if _valid_year(year):
            return year, match.group(0)
    return None


def _years_ago(*patterns):
    def rule(text: str) -> RuleResult:
        for pattern in patterns:
            for match in pattern.finditer(text):
                years = int(match.group(1))
                if 0 < years < MAX_YEARS_CLAIMED:
                    return current_year() - years, match.group(0)
        return None

    return rule


years_in_business = _years_ago(_YEARS_IN_BUSINESS, _SERVING_FOR)
anniversary = _years_ago(_ANNIVERSARY)


def family_owned_since(text: str) -> RuleResult:
    for match in _FAMILY_OWNED_SINCE.finditer(text):
        year = int(match.group(1))
        if _valid_year(year):
            return year, match.group(0)
    return None


FOUNDED_YEAR_RULES: List[Rule] = [founded_in, years_in_business, anniversary, family_owned_since]


# ============================================================================
# People
# ============================================================================

NAME_STOPWORDS = {
    "about", "our", "the", "and", "contact", "home", "services", "service", "free", "call",
    "today", "team", "meet", "read", "more", "learn", "view", "get", "request", "quote",
    "company", "inc", "llc", "group", "us", "we", "your", "new", "best", "north", "south",
    "east", "west", "street", "avenue", "road", "suite", "county", "city", "privacy", "policy",
    "terms", "click", "here", "all", "rights", "reserved", "copyright", "estimate", "now",
    "information", "form", "page", "details", "support", "sales", "office", "anytime", "info",
}

EXECUTIVE_TITLES = {
    "owner", "co-owner", "founder", "co-founder", "president", "ceo", "chief executive officer",
    "principal", "managing partner", "partner", "general manager", "vice president", "vp",
    "cfo", "chief financial officer", "coo", "chief operating officer", "managing director",
    "owner/operator", "owner & founder", "founder & ceo", "owner and founder",
}
JOB_TITLES = {
    "office manager", "project manager", "estimator", "technician", "service manager",
    "operations manager", "sales manager", "lead technician", "foreman", "superintendent",
    "administrator", "bookkeeper", "dispatcher", "installer", "designer", "accountant",
    "attorney", "paralegal", "hygienist", "dentist", "physician", "nurse", "associate",
    "service technician", "master electrician", "master plumber", "controller", "director",
    "production manager", "customer service", "receptionist", "crew leader", "sales",
}

_NAME = r"[A-Z][a-z]{1,15}(?:\s+[A-Z]\.)?\s+[A-Z][a-z]{1,20}(?:-[A-Z][a-z]{1,20})?"
_NAME_THEN_TITLE = re.compile(rf"({_NAME})\s*[,\-–|:]\s*([A-Za-z][A-Za-z&/ \-]{{1,58}})")
_OWNER_PHRASES = [
    re.compile(rf"\b(?:founded|started|established)\s+(?:in\s+\d{{4}}\s+)?by\s+({_NAME})"),
    re.compile(rf"\bowned\s+(?:and|&)\s+operated\s+by\s+({_NAME})"),
    re.compile(rf"\b(?:[Oo]wner|[Ff]ounder|[Pp]resident)(?:\s+and\s+\w+)?\s*[,:]?\s+({_NAME})\b"),
    re.compile(rf"\b({_NAME})\s*,\s*(?:[Oo]wner|[Ff]ounder|[Cc]o-[Ff]ounder|[Pp]resident|CEO)\b"),
]
_FIRST_NAME_CONTACT = re.compile(
    r"\b(?:[Aa]sk for|[Cc]all|[Cc]ontact|[Tt]alk to|[Tt]ext|[Ee]mail)\s+([A-Z][a-z]{2,15})\b(?!\s+[A-Z][a-z])"
)


def is_person_name(name: str) -> bool:
    tokens = [t.strip(".") for t in name.split()]
    if len(tokens) < 2 or len(tokens) > 4:
        return False
    if any(t.lower() in NAME_STOPWORDS for t in tokens):
        return False
    return all(t[:1].isupper() for t in tokens if len(t) > 1)


def classify_title(raw_title: str) -> Optional[bool]:
    """True for an executive title, False for a staff title, None otherwise."""
    normalized = raw_title.lower().strip(" .;!?")
    if not 2 <= len(normalized) <= 60:
        return None
    for titles, executive in ((EXECUTIVE_TITLES, True), (JOB_TITLES, False)):
        if normalized in titles:
            return executive
        for title in titles:
            if normalized.startswith((f"{title} of ", f"{title} for ", f"{title} -", f"{title},")):
                return executive
    return None


def owner_names(text: str) -> RuleResult:
    names = []
    snippets = []
    for pattern in _OWNER_PHRASES:
        for match in pattern.finditer(text):
            name = match.group(1).strip()
            if is_person_name(name):
                names.append(name)
                snippets.append(match.group(0))
    if not names:
        return None
    return dedupe(names)[:5], snippets[0]


def first_name_only_contacts(text: str) -> RuleResult:
    names = []
    snippet = ""
    for match in _FIRST_NAME_CONTACT.finditer(text):
        name = match.group(1)
        if name.lower() in NAME_STOPWORDS:
            continue
        names.append(name)
        snippet = snippet or match.group(0)
    if not names:
        return None
    return dedupe(names)[:5], snippet


def extract_team_members(text: str, source_url: str) -> List[TeamMember]:
    """Find "Name, Title" pairs whose title is a known job or executive title."""
    members = []
    seen = set()
    for match in _NAME_THEN_TITLE.finditer(text or ""):
        name = match.group(1).strip()
        if not is_person_name(name):
            continue

        # Titles can run into the next sentence; try the longest known prefix
        words = match.group(2).split()
        executive = None
        title = ""
        for size in range(min(len(words), 5), 0, -1):
            candidate = " ".join(words[:size])
            executive = classify_title(candidate)
            if executive is not None:
                title = candidate.strip(" .;!?,")
                break
        if executive is None:
            continue

        key = name.lower()
        if key not in seen:
            seen.add(key)
            members.append(TeamMember(name=name, title=title, is_executive=executive, source_url=source_url))

    return members[:MAX_TEAM_MEMBERS]


def dedupe_team_members(members: List[TeamMember]) -> List[TeamMember]:
    """Dedupe by name, preferring the executive entry."""
    by_name = {}
    for member in members:
        key = member.name.lower()
        existing = by_name.get(key)
        if existing is None or (member.is_executive and not existing.is_executive):
            by_name[key] = member
    return list(by_name.values())[:MAX_TEAM_MEMBERS]


# ============================================================================
# Headcount
# ============================================================================

_STAFF_NOUNS = r"(?:employees|staff members|team members|professionals|technicians|people|staff)"
_HEADCOUNT_PATTERNS = [
    re.compile(rf"\b(\d{{1,5}})\+?\s+(?:full[- ]time\s+)?{_STAFF_NOUNS}\b", re.IGNORECASE),
    re.compile(r"\bteam of\s+(?:over\s+|more than\s+)?(\d{1,5})\b", re.IGNORECASE),
    re.compile(r"\bemploys?\s+(?:over\s+|more than\s+)?(\d{1,5})\b", re.IGNORECASE),
    re.compile(rf"\b(?:over|more than)\s+(\d{{1,5}})\s+{_STAFF_NOUNS}\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,5})[- ]person\s+(?:team|crew|staff)\b", re.IGNORECASE),
]
_HEADCOUNT_RANGE = re.compile(r"\b(\d{1,5})\s*(?:-|–|to)\s*(\d{1,5})\s+employees\b", re.IGNORECASE)


def headcount(text: str) -> RuleResult:
    """Most frequently claimed headcount, ties broken toward the larger count."""
    candidates = []
    for pattern in _HEADCOUNT_PATTERNS:
        for match in pattern.finditer(text):
            count = int(match.group(1))
            if MIN_HEADCOUNT <= count <= MAX_HEADCOUNT:
                candidates.append((count, match.group(0).strip()))

    for match in _HEADCOUNT_RANGE.finditer(text):
        low, high = int(match.group(1)), int(match.group(2))
        if MIN_HEADCOUNT <= high <= MAX_HEADCOUNT and high > low:
            candidates.append((high, match.group(0).strip()))

    if not candidates:
        return None

    frequency = Counter(count for count, _ in candidates)
    best = max(candidates, key=lambda c: (frequency[c[0]], c[0]))
    return best


# ============================================================================
# Business Profile
# ============================================================================

_SERVICE_LEAD_INS = re.compile(
    r"\b(?:our services include|services include|we offer|we provide|we specialize in|specializing in|"
    r"specialists in|services we offer)\s*:?\s*([^.!?]{3,200})",
    re.IGNORECASE,
)
_CLIENT_LEAD_INS = re.compile(
    r"\b(?:clients include|customers include|trusted by|proud to serve|proudly serving|"
    r"we have worked with|partners include)\s*:?\s*([^.!?]{3,200})",
    re.IGNORECASE,
)
COMMERCIAL_PHRASES = [
    "commercial clients", "commercial customers", "commercial projects", "commercial accounts",
    "property management", "property managers", "general contractors", "government contract",
    "municipal", "homeowners association", "hoa", "fortune 500", "corporate clients",
    "enterprise clients", "industrial clients", "institutional",
]

CERTIFICATION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bBBB\s+(?:A\+\s+)?accredited\b",
        r"\bNATE[- ]certified\b",
        r"\bEPA[- ](?:certified|lead[- ]safe)\b",
        r"\bOSHA(?:[- ](?:certified|compliant|trained|\d+))?\b",
        r"\bISO\s?9001\b",
        r"\bLEED(?:[- ](?:certified|accredited|AP))?\b",
        r"\blicensed,?\s+(?:bonded,?\s+)?(?:and|&)\s+insured\b",
        r"\blicensed\s+(?:and|&)\s+bonded\b",
        r"\bmaster\s+(?:electrician|plumber)\b",
        r"\b(?:factory|manufacturer)[- ]certified\b",
        r"\bcertified\s+(?:contractor|installer|technicians?|professionals?)\b",
        r"\b(?:angi|angie'?s list)\s+super\s+service\b",
        r"\bboard[- ]certified\b",
        r"\blicense\s*(?:#|no\.?|number)\s*:?\s*[A-Z0-9-]{3,}\b",
    )
]

PRICING_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bfree\s+(?:estimates?|quotes?|consultations?|inspections?)\b",
        r"\bfinancing\s+(?:available|options)\b",
        r"\bstarting\s+at\s+\$\s?\d[\d,]*(?:\.\d{2})?",
        r"\$\s?\d[\d,]*(?:\.\d{2})?(?:\s*(?:/|per)\s*(?:hour|hr|month|mo|visit|sq\.?\s?ft))?",
        r"\bflat[- ]rate\s+pricing\b",
        r"\bupfront\s+pricing\b",
        r"\bno\s+hidden\s+fees\b",
        r"\bprice\s+match\b",
        r"\bsenior\s+discounts?\b",
        r"\bmilitary\s+discounts?\b",
    )
]

RECURRING_REVENUE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bmaintenance\s+(?:contracts?|agreements?|plans?|programs?)\b",
        r"\bservice\s+(?:contracts?|agreements?|plans?)\b",
        r"\bmanaged\s+services\b",
        r"\bmonthly\s+(?:service|maintenance|plans?)\b",
        r"\bannual\s+(?:service|maintenance|inspections?)\b",
        r"\bpreventi(?:ve|ative)\s+maintenance\b",
        r"\bmembership\s+(?:plans?|club|program)\b",
        r"\bsubscriptions?\b",
        r"\bretainers?\b",
    )
]

_NUMBER_WORDS = {
    "two": 2, "three": 3, "four": 4, "five": 5, "six": 6, "seven": 7,
    "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}
_LOCATION_COUNT = re.compile(
    r"\b(\d{1,3}|" + "|".join(_NUMBER_WORDS) + r")\s+(?:convenient\s+|office\s+|retail\s+)?"
    r"(?:locations|offices|branches|showrooms|stores)\b",
    re.IGNORECASE,
)
_COPYRIGHT = re.compile(
    r"(?:©|&copy;|\(c\)|copyright)\s*(?:\d{4}\s*(?:-|–)\s*)?(\d{4})", re.IGNORECASE
)
_QUOTED_TESTIMONIAL = re.compile(
    r"[\"“][^\"”]{20,400}[\"”]\s*(?:-|–|—|~)\s*[A-Z][a-z]+"
)
_STAR_RATING = re.compile(r"★{5}|\b5[- ]star\s+review\b", re.IGNORECASE)


def _all_patterns(patterns, text: str) -> RuleResult:
    found = []
    for pattern in patterns:
        found.extend(m.group(0).strip() for m in pattern.finditer(text))
    found = dedupe(found)[:MAX_LIST_ITEMS]
    if not found:
        return None
    return found, found[0]


def services(text: str) -> RuleResult:
    items = []
    snippet = ""
    for match in _SERVICE_LEAD_INS.finditer(text):
        for item in _split_list(match.group(1)):
            if 2 < len(item) <= 60 and len(item.split()) <= 6:
                items.append(item)
        snippet = snippet or match.group(0)
    items = dedupe(items)[:MAX_LIST_ITEMS]
    if not items:
        return None
    return items, snippet


def commercial_client_names(text: str) -> RuleResult:
    names = []
    snippet = ""
    for match in _CLIENT_LEAD_INS.finditer(text):
        for item in _split_list(match.group(1)):
            if item[:1].isupper() and len(item) <= 60 and len(item.split()) <= 6:
                names.append(item)
        snippet = snippet or match.group(0)
    names = dedupe(names)[:MAX_LIST_ITEMS]
    if not names:
        return None
    return names, snippet


def commercial_mentions(text: str) -> RuleResult:
    lowered = text.lower()
    for phrase in COMMERCIAL_PHRASES:
        if re.search(rf"\b{re.escape(phrase)}\b", lowered):
            return True, phrase
    return None


def certifications(text: str) -> RuleResult:
    return _all_patterns(CERTIFICATION_PATTERNS, text)


def pricing_signals(text: str) -> RuleResult:
    return _all_patterns(PRICING_PATTERNS, text)


def recurring_revenue_signals(text: str) -> RuleResult:
    return _all_patterns(RECURRING_REVENUE_PATTERNS, text)


def location_count(text: str) -> RuleResult:
    best = None
    for match in _LOCATION_COUNT.finditer(text):
        raw = match.group(1).lower()
        count = _NUMBER_WORDS.get(raw) or int(raw)
        if 1 < count < 1000 and (best is None or count > best[0]):
            best = (count, match.group(0))
    return best


def copyright_year(text: str) -> RuleResult:
    """Latest plausible year in a copyright notice."""
    best = None
    for match in _COPYRIGHT.finditer(text):
        year = int(match.group(1))
        if _valid_year(year) and (best is None or year > best[0]):
            best = (year, match.group(0))
    return best


def testimonial_count(text: str) -> RuleResult:
    quotes = _QUOTED_TESTIMONIAL.findall(text)
    stars = _STAR_RATING.findall(text)
    count = len(set(quotes)) + len(stars)
    if not count:
        return None
    return count, (quotes or stars)[0]


OWNER_RULES: List[Rule] = [owner_names]
FIRST_NAME_CONTACT_RULES: List[Rule] = [first_name_only_contacts]
HEADCOUNT_RULES: List[Rule] = [headcount]
SERVICE_RULES: List[Rule] = [services]
COMMERCIAL_CLIENT_RULES: List[Rule] = [commercial_client_names]
COMMERCIAL_MENTION_RULES: List[Rule] = [commercial_mentions]
CERTIFICATION_RULES: List[Rule] = [certifications]
LOCATION_RULES: List[Rule] = [location_count]
PRICING_RULES: List[Rule] = [pricing_signals]
COPYRIGHT_RULES: List[Rule] = [copyright_year]
TESTIMONIAL_RULES: List[Rule] = [testimonial_count]
RECURRING_REVENUE_RULES: List[Rule] = [recurring_revenue_signals]
