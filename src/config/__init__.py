"""Configuration package for the annotation closure service."""

from .closure_config import ClosureServiceConfig, get_closure_config, reload_config

__all__ = ["ClosureServiceConfig", "get_closure_config", "reload_config"]
