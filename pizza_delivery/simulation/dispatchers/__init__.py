"""
调度器模块
实现单智能体的订单选择、抢占与配送状态机
"""

from .pizza_dispatcher import (
    PizzaDispatcher,
    DispatcherConfig,
    step,
    find_closest_order,
    find_most_urgent_order,
    should_preempt
)

__all__ = [
    'PizzaDispatcher',
    'DispatcherConfig',
    'step',
    'find_closest_order',
    'find_most_urgent_order',
    'should_preempt'
]
