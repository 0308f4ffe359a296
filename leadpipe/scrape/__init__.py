"""
Scrape Task
===========

Turns a lead's website into an ExtractionResult:
- fetcher.py: curl_cffi lightweight fetch with browser impersonation
- page_pool.py: fixed pool of Playwright pages for headless rendering
- render.py: fetch-first, render-on-demand strategy selection
- domain_tracker.py: per-domain health, backoff and concurrency allowance
- html.py / rules.py / contacts.py: markup parsing and signal rules
- extractor.py: merges rule output into an ExtractionResult
- document.py: page document artifact
- orchestrator.py: bounded worker pool for one scrape batch
"""
