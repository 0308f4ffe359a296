"""
Contact details: emails, US phone numbers, social profiles, contact page.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

from leadpipe.common import mask_email

logger = logging.getLogger(__name__)

MAX_EMAILS = 10
MAX_PHONES = 5

# TLD capped at 6 chars to reject asset names like v@build.version
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,6}\b")
PLACEHOLDER_EMAIL_DOMAINS = ("example.com", "domain.com", "email.com", "yourdomain.com", "sentry.io")
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg")

PHONE_PATTERN = re.compile(r"(?:\+1[-.\s]?)?\(?[2-9]\d{2}\)?[-.\s]?\d{3}[-.\s]?\d{4}")

CONTACT_PAGE_PATTERN = re.compile(r"/(?:contact(?:-us)?|get-in-touch|reach-us)/?$", re.IGNORECASE)

SOCIAL_PATTERNS = {
    "linkedin": re.compile(r"https?://(?:www\.)?linkedin\.com/(?:company|in)/[a-zA-Z0-9_-]+/?", re.IGNORECASE),
    "facebook": re.compile(r"https?://(?:www\.)?facebook\.com/[a-zA-Z0-9._-]+/?", re.IGNORECASE),
    "instagram": re.compile(r"https?://(?:www\.)?instagram\.com/[a-zA-Z0-9._-]+/?", re.IGNORECASE),
    "twitter": re.compile(r"https?://(?:www\.)?(?:twitter\.com|x\.com)/[a-zA-Z0-9_]+/?", re.IGNORECASE),
}

SOCIAL_HOSTS = {
    "linkedin": {"linkedin.com"},
    "facebook": {"facebook.com"},
    "instagram": {"instagram.com"},
    "twitter": {"twitter.com", "x.com"},
}

BLOCKED_PATH_PREFIXES = {
    "linkedin": {"feed", "jobs", "learning", "mynetwork", "posts", "pulse", "search", "sharearticle"},
    "facebook": {
        "plugins", "share.php", "sharer.php", "dialog", "help", "privacy", "terms", "login",
        "watch", "events", "groups", "tr", "pixel", "ads",
    },
    "instagram": {"explore", "p", "reel", "reels", "stories", "tv"},
    "twitter": {"home", "intent", "search", "share", "hashtag", "i"},
}


def extract_emails(text: str) -> List[str]:
    """Lowercased, deduplicated addresses with placeholders and image names removed."""
    emails: List[str] = []
    for raw in EMAIL_PATTERN.findall(text or ""):
        email = raw.lower().strip(".")
        if email in emails:
            continue
        if any(domain in email for domain in PLACEHOLDER_EMAIL_DOMAINS):
            continue
        if email.endswith(IMAGE_SUFFIXES):
            continue
        emails.append(email)
        if len(emails) >= MAX_EMAILS:
            break

    if emails:
        logger.debug(f"Emails found: {', '.join(mask_email(e) for e in emails[:3])}")
    return emails


def normalize_phone(raw: str) -> str:
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def is_fake_phone(digits: str) -> bool:
    if len(set(digits)) <= 2:
        return True
    if digits in ("1234567890", "0123456789", "9876543210"):
        return True
    # 555-0100 through 555-0199 are reserved for fiction
    return digits[3:6] == "555" and digits[6:8] == "01"


def extract_phones(text: str, known: Iterable[str] = ()) -> List[str]:
    """Ten-digit US numbers, excluding fake numbers and ones already known."""
    known_digits = {normalize_phone(p) for p in known}
    phones: List[str] = []
    for raw in PHONE_PATTERN.findall(text or ""):
        digits = normalize_phone(raw)
        if len(digits) != 10 or digits in phones or digits in known_digits:
            continue
        if is_fake_phone(digits):
            continue
        phones.append(digits)
        if len(phones) >= MAX_PHONES:
            break
    return phones


def format_phone(digits: str) -> str:
    return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}" if len(digits) == 10 else digits


def is_social_profile(url: str, platform: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if host not in SOCIAL_HOSTS[platform]:
        return False

    head = parsed.path.lstrip("/").split("/")[0].lower()
    if not head or head in BLOCKED_PATH_PREFIXES[platform]:
        return False
    if platform == "linkedin":
        return bool(re.match(r"^/(company|in)/[^/]+/?$", parsed.path, re.IGNORECASE))
    return True


def extract_social_links(html: str, extra_urls: Iterable[str] = ()) -> Dict[str, str]:
    """
    First valid profile URL per platform, found in the markup or in extra_urls
    (Schema.org sameAs).
    """
    social: Dict[str, str] = {}
    for platform, pattern in SOCIAL_PATTERNS.items():
        candidates = pattern.findall(html or "") + [u for u in extra_urls if pattern.match(u)]
        for candidate in candidates:
            if is_social_profile(candidate, platform):
                parsed = urlparse(candidate)
                social[platform] = f"{parsed.scheme}://{parsed.netloc}{parsed.path}".rstrip("/")
                break
    return social


def find_contact_page(urls: Iterable[str]) -> Optional[str]:
    for url in urls:
        if CONTACT_PAGE_PATTERN.search(urlparse(url).path or ""):
            return url
    return None
