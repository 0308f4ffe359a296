"""
Pipeline Utilities
==================

- storage.py: S3 artifact store for page documents and run summaries
"""
