"""
Scoring Task
============

- market.py: review-count percentile breakpoints per business_type segment
- prompts.py: classifier prompt templates
- classifier.py: OpenRouter chat completion, JSON repair and validation
- orchestrator.py: bounded worker pool for one scoring batch
"""
