"""
Integration tests for the transcript monitor HTTP surface.

The relay is replaced by a scripted fetcher; no network access is needed.
"""
