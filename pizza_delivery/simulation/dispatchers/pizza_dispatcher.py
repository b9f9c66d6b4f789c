"""
Pizza Dispatcher - 单智能体披萨派送调度
策略：默认选择最近订单；当最紧急订单的剩余时间扣除路程时间后低于阈值时，抢占为最紧急订单
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..entities import AgentState, Order, Position, UrgencyStatus
from ..world import DeliveryWorld

logger = logging.getLogger(__name__)

# (event_type, entity_id, details)
EventListener = Callable[[str, int, Dict[str, Any]], None]


@dataclass(frozen=True)
class DispatcherConfig:
    """调度器阈值配置"""
    delivery_radius: float = 300.0  # 进入该距离内才尝试送餐
    urgency_margin: float = 5.0  # 剩余时间 - 路程时间 低于该值时触发抢占

    def __post_init__(self):
        if self.delivery_radius <= 0:
            raise ValueError(f"delivery_radius must be positive, got {self.delivery_radius}")
        if self.urgency_margin < 0:
            raise ValueError(f"urgency_margin must be non-negative, got {self.urgency_margin}")

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> 'DispatcherConfig':
        """
        从配置字典构建（对应 config.yaml 的 dispatcher 段）

        Args:
            config: 配置字典，缺省项使用默认值

        Returns:
            DispatcherConfig实例
        """
        config = config or {}
        return cls(
            delivery_radius=float(config.get('delivery_radius', cls.delivery_radius)),
            urgency_margin=float(config.get('urgency_margin', cls.urgency_margin))
        )


def _locatable_orders(orders: Sequence[Order],
                      house_locations: Mapping[int, Position]) -> List[Order]:
    """过滤掉房屋位置未知的订单，保持原有顺序"""
    located = []
    for order in orders:
        if order.house_number in house_locations:
            located.append(order)
        else:
            logger.warning(
                f"订单 {order.order_number} 的房屋 {order.house_number} 不在位置表中，跳过"
            )
    return located


def find_closest_order(world: DeliveryWorld,
                       orders: Sequence[Order],
                       house_locations: Mapping[int, Position]) -> Tuple[Order, float]:
    """
    找到房屋距离智能体最近的订单

    Args:
        world: 外部世界
        orders: 非空订单列表
        house_locations: 房屋位置表

    Returns:
        (订单, 距离)，距离相同时取下标最小的订单
    """
    distances = np.array([
        world.get_distance_to_destination(house_locations[order.house_number])
        for order in orders
    ], dtype=float)
    # argmin 返回第一个最小值的下标
    idx = int(np.argmin(distances))
    return orders[idx], float(distances[idx])


def find_most_urgent_order(world: DeliveryWorld,
                           orders: Sequence[Order]) -> Tuple[Order, float]:
    """
    找到剩余变质时间最短的订单

    Returns:
        (订单, 剩余时间)，时间相同时取下标最小的订单
    """
    times_left = np.array([
        world.get_house_time_left(order.house_number) for order in orders
    ], dtype=float)
    idx = int(np.argmin(times_left))
    return orders[idx], float(times_left[idx])


def should_preempt(time_left: float,
                   distance: float,
                   max_speed: float,
                   urgency: UrgencyStatus,
                   urgency_margin: float) -> bool:
    """
    判断是否用最紧急订单抢占最近订单

    Args:
        time_left: 最紧急订单的剩余时间
        distance: 到最紧急订单房屋的距离
        max_speed: 智能体最大速度
        urgency: 当前紧急状态，ARRIVED 时不再抢占
        urgency_margin: 时间余量阈值

    Returns:
        是否抢占
    """
    if urgency is UrgencyStatus.ARRIVED:
        return False

    # 按 IEEE 浮点除法：速度为0时距离为正得 inf，0/0 得 nan（比较恒为假）
    if max_speed != 0:
        travel_time = distance / max_speed
    elif distance == 0:
        travel_time = float('nan')
    else:
        travel_time = math.copysign(float('inf'), distance)
    return time_left - travel_time < urgency_margin


def _step_en_route(state: AgentState,
                   world: DeliveryWorld,
                   config: DispatcherConfig,
                   listener: Optional[EventListener]) -> AgentState:
    """配送中：未进入范围则继续移动，进入范围则尝试送餐"""
    destination = state.current_destination
    distance = world.get_distance_to_destination(destination)

    if distance > config.delivery_radius:
        logger.debug(f"订单 {state.current_order_number} 距离 {distance:.1f}，继续前往")
        world.set_new_move_destination(destination)
        return state

    if state.urgency is UrgencyStatus.SELECTED and distance < config.delivery_radius:
        state = state.with_urgency(UrgencyStatus.ARRIVED)

    order_number = state.current_order_number
    logger.info(f"尝试配送订单 {order_number}，当前距离: {distance:.3f}")

    if not world.try_deliver_pizza(order_number):
        # 已在范围内但送餐动作失败，重新下发移动指令
        world.set_new_move_destination(destination)
        return state

    logger.info(f"订单 {order_number} 已送达")
    state = state.cleared()
    if listener is not None:
        listener('order_delivered', order_number, {'distance': distance})

    # 注意：这里比较的是刚测得的送达距离与其他房屋的距离是否相等，
    # 而不是其他订单的截止时间，见 DESIGN.md。
    house_locations = world.get_house_locations()
    for order in world.get_pizza_orders():
        location = house_locations.get(order.house_number)
        if location is None:
            continue
        if (world.waits_house_pizza_delivery(order.house_number)
                and distance == world.get_distance_to_destination(location)):
            state = state.with_urgency(UrgencyStatus.ARRIVED)
            break

    return state


def _step_idle(state: AgentState,
               world: DeliveryWorld,
               config: DispatcherConfig,
               listener: Optional[EventListener]) -> AgentState:
    """空闲：选择订单，必要时取餐，然后承诺配送"""
    orders = world.get_pizza_orders()
    if not orders:
        return state

    house_locations = world.get_house_locations()
    candidates = _locatable_orders(orders, house_locations)
    if not candidates:
        return state

    closest_order, _ = find_closest_order(world, candidates, house_locations)
    urgent_order, time_left = find_most_urgent_order(world, candidates)

    order = closest_order
    urgent_distance = world.get_distance_to_destination(house_locations[urgent_order.house_number])
    if should_preempt(time_left,
                      urgent_distance,
                      world.get_character_max_speed(),
                      state.urgency,
                      config.urgency_margin):
        logger.debug(
            f"订单 {urgent_order.order_number} 剩余时间 {time_left:.1f}，"
            f"抢占最近订单 {closest_order.order_number}"
        )
        state = state.with_urgency(UrgencyStatus.SELECTED)
        order = urgent_order

    if world.get_pizza_amount() == 0:
        if not world.try_grab_pizza():
            # 离取餐点太远，下一个tick重试
            logger.debug("取餐失败，等待靠近取餐点")
            return state

    destination = house_locations[order.house_number]
    state = state.commit(order.order_number, destination)
    world.set_new_move_destination(destination)

    logger.info(f"接到新订单 {order.order_number}，目标房屋 {order.house_number}")
    if listener is not None:
        listener('order_taken', order.order_number, {
            'house_number': order.house_number,
            'destination': destination,
            'urgency': state.urgency.value
        })

    return state


def step(state: AgentState,
         world: DeliveryWorld,
         config: Optional[DispatcherConfig] = None,
         listener: Optional[EventListener] = None) -> AgentState:
    """
    调度器单步：每个仿真帧调用一次

    Args:
        state: 当前智能体状态
        world: 外部世界（查询与动作）
        config: 阈值配置，默认 DispatcherConfig()
        listener: 可选事件回调，仅用于观测，不影响决策

    Returns:
        新的智能体状态
    """
    config = config or DispatcherConfig()
    if state.delivering:
        return _step_en_route(state, world, config, listener)
    return _step_idle(state, world, config, listener)


class PizzaDispatcher:
    """
    披萨调度器
    持有单个智能体的状态，由外部仿真循环每帧调用 tick()
    """

    def __init__(self,
                 world: DeliveryWorld,
                 config: Optional[DispatcherConfig] = None,
                 listener: Optional[EventListener] = None):
        """
        初始化调度器

        Args:
            world: 实现 DeliveryWorld 协议的外部世界
            config: 调度阈值
            listener: 事件回调（如 SimulationEnvironment.record_event）
        """
        self.world = world
        self.config = config or DispatcherConfig()
        self.listener = listener
        self.state = AgentState()
        self.tick_count = 0
        self.delivered_count = 0

    def tick(self, delta_seconds: float) -> AgentState:
        """
        推进一帧

        Args:
            delta_seconds: 帧间隔，仅作为触发信号

        Returns:
            更新后的状态
        """
        was_delivering = self.state.delivering
        self.state = step(self.state, self.world, self.config, self.listener)
        self.tick_count += 1
        if was_delivering and not self.state.delivering:
            self.delivered_count += 1
        return self.state
