"""
Core module - configuration, logging, errors, shared typing.

Components:
- config: Settings via pydantic-settings, ConfigProvider interface
- errors: Error taxonomy shared by router, adapters and task queue
- logging: Structured logging setup
- typing: Shared aliases and clock helper
"""

from conduit.core.config import ConfigProvider, Settings, SettingsConfigProvider
from conduit.core.errors import ErrorKind

__all__ = ["ConfigProvider", "ErrorKind", "Settings", "SettingsConfigProvider"]
