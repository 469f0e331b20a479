"""
modhub - 数据库驱动的功能模块注册中心
"""

__version__ = "0.1.0"
