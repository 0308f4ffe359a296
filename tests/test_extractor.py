import json

import pytest

from leadpipe.common import current_year
from leadpipe.errors import ExtractionError
from leadpipe.models import NO_WEBSITE_DATA_FLAG, WebsiteQuality
from leadpipe.scrape.extractor import (
    ContentExtractor,
    assess_website_quality,
    extract_snippets,
    find_red_flags,
)
from leadpipe.scrape.render import RENDERED_VIA_FETCH, build_page_content
from tests.fakes import ABOUT_TEXT, page_html


def _page(url, html):
    return build_page_content(url, html, RENDERED_VIA_FETCH)


@pytest.fixture
def extractor():
    return ContentExtractor()


def test_extracts_core_signals(extractor):
    result = extractor.extract([_page("https://acmeplumbing.com/about", page_html(ABOUT_TEXT))])

    assert result.founded_year == 1995
    assert result.years_in_business == current_year() - 1995
    assert result.owner_names == ["John Carter"]
    assert "Sarah Lopez" in result.team_member_names
    assert "Mike Chen" in result.team_member_names
    assert "drain cleaning" in result.services
    assert result.has_commercial_clients is True
    assert "Riverside Property Management" in result.commercial_client_names
    assert result.headcount_estimate == 12
    assert result.emails == ["office@acmeplumbing.com"]
    assert result.phones == ["3125557788"]
    assert result.copyright_year == 2024
    assert result.contact_page_url == "https://acmeplumbing.com/contact"
    assert result.website_quality == WebsiteQuality.TEMPLATE_BASIC
    assert NO_WEBSITE_DATA_FLAG not in result.red_flags


def test_schema_org_takes_precedence(extractor):
    data = {
        "@type": "Plumber",
        "name": "Acme Plumbing",
        "foundingDate": "2001",
        "founder": {"@type": "Person", "name": "Maria Gonzalez"},
        "email": "Hello@AcmePlumbing.com",
    }
    html = page_html(
        ABOUT_TEXT, extra=f'<script type="application/ld+json">{json.dumps(data)}</script>'
    )
    result = extractor.extract([_page("https://acmeplumbing.com/", html)])

    assert result.founded_year == 2001
    assert result.owner_names[0] == "Maria Gonzalez"
    assert "John Carter" in result.owner_names
    assert result.emails[0] == "hello@acmeplumbing.com"


def test_team_names_are_not_reported_as_first_name_contacts(extractor):
    html = page_html("Mike Chen, Lead Technician, will call you back. For scheduling ask for Mike or text Raul.")
    result = extractor.extract([_page("https://acme.com/", html)])
    assert result.first_name_only_contacts == ["Raul"]


def test_no_pages_raises(extractor):
    with pytest.raises(ExtractionError):
        extractor.extract([])


def test_pages_without_text_raise(extractor):
    with pytest.raises(ExtractionError):
        extractor.extract([_page("https://acme.com/", "<html><body><script>app()</script></body></html>")])


def test_snippets_are_categorized():
    html = (
        "<div><p>Family owned since 1978, our company was founded on honest work and fair prices.</p>"
        "<p>Earn points for every dollar with our loyalty rewards program, voted best in town.</p></div>"
    )
    quotes = extract_snippets(html, "https://acme.com/about")

    assert [(q.category, q.url) for q in quotes] == [("history", "https://acme.com/about")]
    assert quotes[0].text.startswith("Family owned since 1978")


def test_website_quality_bands():
    small = _page("https://acme.com/", page_html("word " * 50))
    big = [_page(f"https://acme.com/{i}", page_html("word " * 700)) for i in range(4)]

    assert assess_website_quality([]) == WebsiteQuality.NONE
    assert assess_website_quality([small]) == WebsiteQuality.TEMPLATE_BASIC
    assert assess_website_quality(big[:2]) == WebsiteQuality.PROFESSIONAL
    assert assess_website_quality(big) == WebsiteQuality.CONTENT_RICH


def test_red_flags():
    flags = find_red_flags("Lorem ipsum dolor. Coming soon!", current_year() - 10)
    assert flags == [
        "Placeholder text (lorem ipsum)",
        "Website under construction",
        f"Stale copyright year ({current_year() - 10})",
        "Minimal website content",
    ]
    assert find_red_flags("word " * 200, current_year()) == []
