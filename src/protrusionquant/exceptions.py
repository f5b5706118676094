# src/protrusionquant/exceptions.py
from __future__ import annotations

class ProtrusionQuantError(Exception):
    """Base for all domain errors."""

class ConfigError(ProtrusionQuantError):
    """Invalid or missing configuration."""

class MissingRegionsError(ConfigError):
    """Cell masking requested but no cell regions are available."""

class DataNotFound(ProtrusionQuantError):
    """Required file(s) or directory not found."""

class ImageIOError(ProtrusionQuantError):
    """Image file unreadable or invalid."""

class SegmentationError(ProtrusionQuantError):
    """Segmentation input or output is unusable."""

class MetricComputationError(ProtrusionQuantError):
    """Metrics step failed."""

class VisualizationError(ProtrusionQuantError):
    """Overlay/figure export failed."""
