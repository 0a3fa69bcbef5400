"""
設定管理
"""

from .settings import AppConfig, ConfigManager, load_config

__all__ = ['AppConfig', 'ConfigManager', 'load_config']
