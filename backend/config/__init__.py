"""
Configuration package

Bundles the default config.toml and the loader that materialises the
user configuration file from it.
"""

from .loader import ConfigLoader, get_config

__all__ = ["ConfigLoader", "get_config"]
