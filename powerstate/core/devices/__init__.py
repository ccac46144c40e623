from __future__ import annotations

from .model import (
    CachedReadingsReader,
    DeviceReader,
    DeviceReadings,
    DeviceType,
    PowerBackend,
    PowerDevice,
    StaticBackend,
)
from .registry import DeviceRegistry

__all__ = [
    "CachedReadingsReader",
    "DeviceReader",
    "DeviceReadings",
    "DeviceRegistry",
    "DeviceType",
    "PowerBackend",
    "PowerDevice",
    "StaticBackend",
]
