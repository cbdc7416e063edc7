"""Exceptions raised while loading shardstore configuration."""


class ConfigError(Exception):
    """Raised when configuration data cannot be parsed or validated."""
