"""Utility helpers for confcall."""

from .gst import PipelineUnavailableError, RtpBinEndpoints, gst_available
from .logging import configure_logging

__all__ = ["PipelineUnavailableError", "RtpBinEndpoints", "configure_logging", "gst_available"]
