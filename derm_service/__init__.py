"""Dermatology AI analysis service: photo analysis and diagnosis synthesis."""

__version__ = "1.0.0"
