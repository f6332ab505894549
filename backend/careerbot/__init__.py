"""Application package for the CareerBot backend.

This package exposes the service, repository and model modules used by
the FastAPI application, plus a small API client for scripts and tests.
Individual modules contain the concrete implementations and
documentation.
"""
