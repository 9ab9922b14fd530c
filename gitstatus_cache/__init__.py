# -*- coding: utf-8 -*-
"""
GitStatusCache package root
Sprint 1: Package initialization
"""

__version__ = "0.3.0"
__title__ = "GitStatusCache"

# Import core modules to ensure they're available
from . import core

# Qt is imported only when the pump is requested (lazy load)
__all__ = ["core"]
