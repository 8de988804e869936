"""Configuration package for Extractr.

Settings come from pydantic-settings (environment and ``.env``); fixed
catalogues that are part of the extraction contract live in ``constants``.
"""

from config.settings import GlobalConfig, get_config

__all__ = ["GlobalConfig", "get_config"]
