"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import DiscoverySettings, ExtractionSettings, GlobalConfig, StorageSettings

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "DiscoverySettings",
    "ExtractionSettings",
    "GlobalConfig",
    "StorageSettings",
]
