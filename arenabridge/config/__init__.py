"""Configuration module."""

from arenabridge.config.settings import BridgeSettings

__all__ = ["BridgeSettings"]
