"""Personality diagnosis scoring and adaptive refinement engine."""

__version__ = "0.1.0"
