"""Configuration module."""

from roomclient.config.constants import RoomConstants
from roomclient.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "RoomConstants"]
