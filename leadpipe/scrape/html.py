"""
Markup helpers for scraped pages.

Pure functions only: plain text, title, links, render detection,
Schema.org JSON-LD and internal-link selection.
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlparse

from leadpipe.common import current_year, normalize_domain

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 500

_BLOCK_ELEMENTS = re.compile(
    r"<(script|style|noscript|svg|textarea)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_INPUT_ELEMENT = re.compile(r"<input\b[^>]*>", re.IGNORECASE)
_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_BLOCK_BOUNDARY = re.compile(
    r"</?(?:p|div|li|ul|ol|h[1-6]|br|section|article|header|footer|nav|td|tr|blockquote)\b[^>]*>",
    re.IGNORECASE,
)

# &lt; and &gt; decode to spaces: plain text never carries angle brackets
_ENTITIES = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", " "),
    ("&gt;", " "),
    ("&quot;", '"'),
    ("&#39;", "'"),
)

_TITLE = re.compile(r"<title[^>]*>([^<]*)</title>", re.IGNORECASE)
_HREF = re.compile(r"""href\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
_SKIPPED_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:")

_SPA_SHELL_PATTERNS = [
    re.compile(r"""<div\s+id=["']root["'][^>]*>\s*</div>""", re.IGNORECASE),
    re.compile(r"""<div\s+id=["']app["'][^>]*>\s*</div>""", re.IGNORECASE),
    re.compile(r"""<div\s+id=["']__next["'][^>]*>\s*</div>""", re.IGNORECASE),
    re.compile(r"Loading\.\.\.", re.IGNORECASE),
    re.compile(
        r"<noscript[^>]*>(?:(?!</noscript>).)*?(?:enable|requires?)\s+JavaScript",
        re.IGNORECASE | re.DOTALL,
    ),
]

_JSON_LD = re.compile(
    r"""<script[^>]*type=["']application/ld\+json["'][^>]*>(.*?)</script>""",
    re.IGNORECASE | re.DOTALL,
)

SCHEMA_TYPES_OF_INTEREST = {
    "LocalBusiness", "Organization", "Corporation", "HomeAndConstructionBusiness",
    "ProfessionalService", "FinancialService", "InsuranceAgency", "RealEstateAgent",
    "LegalService", "Dentist", "Physician", "Store", "Restaurant", "AutoRepair",
    "Plumber", "Electrician", "HVACBusiness", "RoofingContractor", "GeneralContractor",
}

PRIORITY_PATHS = ["about", "team", "staff", "leadership", "contact", "services", "our-story"]

_ASSET_SUFFIXES = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico", ".css", ".js",
    ".zip", ".mp4", ".mp3", ".mov", ".doc", ".docx", ".xls", ".xlsx", ".xml",
)


def _decode_entities(text: str) -> str:
    # Decode to a fixed point so "&amp;amp;" cannot survive a second pass
    while True:
        decoded = text
        for entity, replacement in _ENTITIES:
            decoded = decoded.replace(entity, replacement)
        if decoded == text:
            return decoded
        text = decoded


def extract_text(html: str) -> str:
    """
    Turn raw markup into collapsed plain text.

    Idempotent: extract_text(extract_text(x)) == extract_text(x), and the
    result never contains "<" or ">".
    """
    if not html:
        return ""

    text = _BLOCK_ELEMENTS.sub(" ", html)
    text = _INPUT_ELEMENT.sub(" ", text)
    text = _COMMENT.sub(" ", text)
    text = _TAG.sub(" ", text)
    text = _decode_entities(text)
    text = text.replace("<", " ").replace(">", " ")
    return _WHITESPACE.sub(" ", text).strip()


def extract_blocks(html: str, min_length: int = 30, max_length: int = 300) -> List[str]:
    """
    Split markup on block-level elements and return each block's text.

    Blocks outside [min_length, max_length] characters are dropped.
    """
    if not html:
        return []
    stripped = _BLOCK_ELEMENTS.sub(" ", html)
    stripped = _COMMENT.sub(" ", stripped)
    blocks = []
    for chunk in _BLOCK_BOUNDARY.split(stripped):
        text = extract_text(chunk)
        if min_length <= len(text) <= max_length:
            blocks.append(text)
    return blocks


def extract_title(html: str) -> str:
    match = _TITLE.search(html or "")
    return match.group(1).strip() if match else ""


def extract_links(html: str, base_url: str) -> List[str]:
    """
    Resolve every href against base_url.

    Fragment-only, javascript:, mailto: and tel: links are dropped, invalid
    URLs are skipped, and duplicates are removed keeping first occurrence.
    """
    links: List[str] = []
    seen = set()

    for match in _HREF.finditer(html or ""):
        href = match.group(1).strip()
        if not href or href.lower().startswith(_SKIPPED_HREF_PREFIXES):
            continue
        try:
            absolute = urljoin(base_url, href)
            parsed = urlparse(absolute)
        except ValueError:
            continue
        if not parsed.scheme or not parsed.netloc:
            continue
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)

    return links


def needs_render(html: str, text: Optional[str] = None) -> bool:
    """
    Decide whether a page must be rendered in a headless browser.

    True when the extracted text is shorter than 500 characters, or the
    markup looks like an empty single-page-app shell.
    """
    if text is None:
        text = extract_text(html)
    if len(text) < MIN_TEXT_LENGTH:
        return True
    return any(pattern.search(html or "") for pattern in _SPA_SHELL_PATTERNS)


def extract_schema_org(html: str) -> Optional[Dict[str, Any]]:
    """
    Merge Schema.org JSON-LD business data across all blocks on a page.

    Returns None when no block describes a business. Keys: name, email,
    telephone, founding_year, founder, number_of_employees, same_as.
    """
    merged: Dict[str, Any] = {}
    same_as: List[str] = []
    found = False

    for block in _JSON_LD.findall(html or ""):
        try:
            data = json.loads(block.strip())
        except json.JSONDecodeError:
            continue

        for item in _json_ld_items(data):
            item_type = item.get("@type")
            types = item_type if isinstance(item_type, list) else [item_type]
            if not any(t in SCHEMA_TYPES_OF_INTEREST for t in types if isinstance(t, str)):
                continue
            found = True

            if item.get("name") and "name" not in merged:
                merged["name"] = str(item["name"])
            if item.get("email") and "email" not in merged:
                merged["email"] = re.sub(r"^mailto:", "", str(item["email"]), flags=re.IGNORECASE)
            if item.get("telephone") and "telephone" not in merged:
                merged["telephone"] = str(item["telephone"])

            founding = item.get("foundingDate")
            if founding and "founding_year" not in merged:
                year_match = re.match(r"\s*(\d{4})", str(founding))
                if year_match and 1800 <= int(year_match.group(1)) <= current_year():
                    merged["founding_year"] = int(year_match.group(1))

            employees = item.get("numberOfEmployees")
            if employees and "number_of_employees" not in merged:
                if isinstance(employees, dict):
                    employees = employees.get("value") or employees.get("minValue")
                if isinstance(employees, (int, float)) and not isinstance(employees, bool):
                    merged["number_of_employees"] = int(employees)

            founder = item.get("founder")
            if founder and "founder" not in merged:
                if isinstance(founder, list):
                    founder = founder[0] if founder else None
                if isinstance(founder, dict):
                    founder = founder.get("name")
                if isinstance(founder, str) and founder.strip():
                    merged["founder"] = founder.strip()

            profiles = item.get("sameAs")
            if profiles:
                profiles = profiles if isinstance(profiles, list) else [profiles]
                same_as.extend(p for p in profiles if isinstance(p, str) and p.startswith("http"))

    if not found:
        return None

    if same_as:
        merged["same_as"] = list(dict.fromkeys(same_as))

    logger.debug(f"Schema.org fields found: {sorted(merged)}")
    return merged


def _json_ld_items(data: Any) -> Iterable[Dict[str, Any]]:
    if isinstance(data, list):
        for entry in data:
            yield from _json_ld_items(entry)
    elif isinstance(data, dict):
        graph = data.get("@graph")
        if isinstance(graph, list):
            yield from _json_ld_items(graph)
        else:
            yield data


def page_priority(url: str) -> int:
    """Rank of a URL by the first priority path it contains."""
    lower = url.lower()
    for index, path in enumerate(PRIORITY_PATHS):
        if path in lower:
            return index
    return len(PRIORITY_PATHS)


def select_internal_links(links: List[str], base_url: str, limit: int) -> List[str]:
    """
    Pick up to `limit` same-site pages worth crawling after the homepage.

    Priority pages (about, team, contact, ...) come first; assets and the
    homepage itself are skipped.
    """
    if limit <= 0:
        return []

    site = normalize_domain(base_url)
    home = base_url.rstrip("/")
    candidates = []
    seen = set()

    for link in links:
        parsed = urlparse(link)
        if parsed.scheme not in ("http", "https"):
            continue
        if normalize_domain(parsed.netloc) != site:
            continue
        if parsed.path.lower().endswith(_ASSET_SUFFIXES):
            continue
        clean = f"{parsed.scheme}://{parsed.netloc}{parsed.path or '/'}"
        if parsed.query:
            clean = f"{clean}?{parsed.query}"
        if clean.rstrip("/") == home or clean in seen:
            continue
        seen.add(clean)
        candidates.append(clean)

    # Stable sort keeps document order inside each priority band
    candidates.sort(key=page_priority)
    return candidates[:limit]
