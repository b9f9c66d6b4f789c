"""
pizza_delivery - 单智能体披萨派送调度
"""

__version__ = "0.1.0"
