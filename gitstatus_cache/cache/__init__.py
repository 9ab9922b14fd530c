# -*- coding: utf-8 -*-
"""
GitStatusCache Cache Module
Sprint 4: Status database keyed by stable resource ids
"""

from .database import StatusDatabase
from .entries import CacheEntry, StatusMap
from .index import MappingResourceIndex, PathResourceIndex

__all__ = [
    "StatusDatabase",
    "CacheEntry",
    "StatusMap",
    "MappingResourceIndex",
    "PathResourceIndex",
]
