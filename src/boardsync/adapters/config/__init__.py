"""
Config adapters - Load AppConfig from files, .env and the environment.
"""

from .environment import EnvironmentConfigProvider
from .file_provider import FileConfigProvider, build_app_config, find_config_file


__all__ = [
    "EnvironmentConfigProvider",
    "FileConfigProvider",
    "build_app_config",
    "find_config_file",
]
