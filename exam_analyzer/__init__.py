"""
Exam paper analysis backend: ingest exam documents, extract question trees,
synthesize model answers.
"""

__version__ = "1.0.0"
