"""
仿真模块
单智能体披萨派送调度核心与基于 SimPy 的参考仿真环境
"""

from .entities import (
    Order, House, AgentState, UrgencyStatus, DispatcherPhase, SimulationEvent, Position
)
from .world import DeliveryWorld
from .dispatchers.pizza_dispatcher import (
    PizzaDispatcher, DispatcherConfig, step
)
from .environment import SimulationEnvironment, build_environment

__all__ = [
    'Order',
    'House',
    'AgentState',
    'UrgencyStatus',
    'DispatcherPhase',
    'SimulationEvent',
    'Position',
    'DeliveryWorld',
    'PizzaDispatcher',
    'DispatcherConfig',
    'step',
    'SimulationEnvironment',
    'build_environment'
]
