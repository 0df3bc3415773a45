"""
Logging module for unicornctl.
This module provides the console setup and optional log shipping to Grafana Loki.
"""

from .setup import setup_logging

__all__ = ["setup_logging"]
