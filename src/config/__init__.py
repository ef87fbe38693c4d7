"""
Configuration package for the receipt storage engine.
"""

from .settings import AppConfig, ensure_directories

__all__ = ["AppConfig", "ensure_directories"]
