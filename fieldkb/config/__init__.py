"""Configuration module -- exports Settings."""

from fieldkb.config.settings import Settings

__all__ = ["Settings"]
