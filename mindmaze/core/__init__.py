"""Core gameplay rules (progress, question lifecycle, achievements).

Kept free of FastAPI concerns so it can be reused by API routes, scripts, and tests.
"""
