"""
Configuration management.

YAML project config with environment overlays and placeholder resolution.
"""

from sftpsource.config.loader import Config, load_config
from sftpsource.config.resolver import resolve_config

__all__ = ["Config", "load_config", "resolve_config"]
