"""
Service layer for the roster import pipeline.

Parsing, classification, transformation, loading and orchestration are
framework-agnostic and can be driven by the CLI, Celery tasks or tests.
"""

__version__ = "1.0.0"
