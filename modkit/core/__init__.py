"""modkit 核心层"""
