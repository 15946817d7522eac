"""
Core module - configuration and observability
"""

from .config import Config
from .observability import get_logfire, setup_logfire

__all__ = ['Config', 'get_logfire', 'setup_logfire']
