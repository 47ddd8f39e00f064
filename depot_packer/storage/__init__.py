"""
Storage Layer.

This package handles all data persistence: the INI configuration file, the
saved downloader login and the user's release template.
"""

from .config_manager import ConfigManager
from .login_store import LoginStore
from .template_store import TemplateStore

__all__ = ["ConfigManager", "LoginStore", "TemplateStore"]
