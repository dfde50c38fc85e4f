"""Shared utilities and services"""

from .security import SecurityManager

__all__ = [
    'SecurityManager'
]
