"""
Leadpipe
========

Scrape-and-score pipeline for business leads.

- Crawls each lead's website (lightweight fetch, headless fallback)
- Extracts structured business signals with heuristic rules
- Scores acquisition attractiveness with an LLM classifier
  normalized against market-wide review statistics
"""

__version__ = "1.0.0"
__author__ = "Leadpipe Team"
