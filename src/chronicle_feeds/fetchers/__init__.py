"""Concurrent feed retrieval."""

from .http import FeedFetcher
from .orchestrator import FetchOrchestrator, overall_status

__all__ = ["FeedFetcher", "FetchOrchestrator", "overall_status"]
