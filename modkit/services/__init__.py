"""modkit 服务层"""
