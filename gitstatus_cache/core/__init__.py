# -*- coding: utf-8 -*-
"""
GitStatusCache Core Module
Sprint 1: Core utilities package
"""

from . import log
from . import settings
from . import jobs

__all__ = ["log", "settings", "jobs"]
