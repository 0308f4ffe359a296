"""
Page document built from one lead's crawled pages.

The document is stored in the artifact store as
scrape-markdown/{lead_id}/{run_id}.md and is what a reviewer reads next to
the extraction.
"""

from typing import List

from leadpipe.scrape.html import page_priority
from leadpipe.scrape.render import PageContent

MAX_DOCUMENT_CHARS = 60_000


def build_page_document(pages: List[PageContent], max_chars: int = MAX_DOCUMENT_CHARS) -> str:
    """
    Concatenate pages into one markdown document.

    Priority pages (about, team, ...) come first, then the rest by URL. Each
    section starts with a `# {title}` / `Source: {url}` header; the whole
    document is cut at max_chars.
    """
    ordered = sorted(pages, key=lambda page: (page_priority(page.url), page.url))

    parts: List[str] = []
    total = 0
    for page in ordered:
        if total >= max_chars:
            break
        body = page.text.strip()
        if not body:
            continue

        section = f"# {page.title or 'Untitled'}\nSource: {page.url}\n---\n{body}\n\n"
        remaining = max_chars - total
        if len(section) > remaining:
            parts.append(section[:remaining])
            break
        parts.append(section)
        total += len(section)

    return "".join(parts)
