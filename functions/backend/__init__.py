"""
Backend package for the vignette API.

This package provides a FastAPI application with storage, database, lock and
auth abstractions so the splicing pipeline can run as a long-running service
or entirely in memory for local development.
"""
