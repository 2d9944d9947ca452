"""配置驱动的两份数据集同步判定工具 (ADD / UPDATE / DELETE / KEEP)。"""

__version__ = "1.0.0"
