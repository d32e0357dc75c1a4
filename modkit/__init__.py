"""modkit - 游戏模组本地包管理器"""

__version__ = "0.3.0"
