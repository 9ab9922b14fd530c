# -*- coding: utf-8 -*-
"""
GitStatusCache Git Module
Sprint 2: git CLI access and output parsing
"""
