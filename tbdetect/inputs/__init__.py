# tbdetect/inputs/__init__.py
from .settings import SettingsLoader, descriptor, load_settings

__all__ = ["SettingsLoader", "descriptor", "load_settings"]
