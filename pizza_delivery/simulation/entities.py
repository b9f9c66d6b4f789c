"""
仿真实体类定义
包含订单(Order)、房屋(House)与派送智能体状态(AgentState)的数据结构与状态机
"""

from collections import deque
from enum import Enum
from dataclasses import dataclass, field, replace
from typing import Deque, Tuple, Optional, Dict, Any

# 平面坐标 (x, y)
Position = Tuple[float, float]


class UrgencyStatus(Enum):
    """紧急状态枚举"""
    NORMAL = "normal"  # 普通（按最近订单选择）
    SELECTED = "selected"  # 因截止时间压力选中了最紧急订单
    ARRIVED = "arrived"  # 已到达紧急订单附近，抑制再次抢占


class DispatcherPhase(Enum):
    """派送状态机阶段"""
    IDLE = "idle"  # 空闲，等待选择订单
    EN_ROUTE = "en_route"  # 已承诺订单，前往配送中


@dataclass(frozen=True)
class Order:
    """订单：订单号 + 目标房屋号，在单个tick内不可变"""
    order_number: int
    house_number: int

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            'order_number': self.order_number,
            'house_number': self.house_number
        }


@dataclass
class House:
    """
    房屋类 - 固定的配送目的地

    每个待配送订单从下单时刻开始倒计时，超过 spoil_time 后披萨变质。
    """
    house_number: int
    coords: Position
    spoil_time: float = 60.0  # 变质倒计时（秒）

    # 运行时状态
    order_placed_time: Optional[float] = None  # 最早未送达订单的下单时间
    pending_count: int = 0  # 未送达订单数
    total_delivered: int = 0
    placed_times: Deque[float] = field(default_factory=deque)  # 未送达订单的下单时间，先进先出

    def place_order(self, current_time: float) -> None:
        """登记一个新订单，倒计时从最早的未送达订单开始"""
        self.placed_times.append(current_time)
        self.order_placed_time = self.placed_times[0]
        self.pending_count = len(self.placed_times)

    def complete_delivery(self, current_time: float) -> None:
        """
        完成最早的一个订单

        Args:
            current_time: 送达时间
        """
        if not self.placed_times:
            raise ValueError(f"House {self.house_number} has no pending delivery")

        self.placed_times.popleft()
        self.pending_count = len(self.placed_times)
        self.total_delivered += 1
        # 下一个订单按它自己的下单时间继续倒计时
        self.order_placed_time = self.placed_times[0] if self.placed_times else None

    def waits_delivery(self) -> bool:
        return self.pending_count > 0

    def get_time_left(self, current_time: float) -> float:
        """
        获取剩余变质时间

        Args:
            current_time: 当前仿真时间

        Returns:
            剩余时间（秒），可能为负；没有待配送订单时返回 inf
        """
        if self.order_placed_time is None:
            return float('inf')
        return self.spoil_time - (current_time - self.order_placed_time)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            'house_number': self.house_number,
            'coords': self.coords,
            'spoil_time': self.spoil_time,
            'pending_count': self.pending_count,
            'total_delivered': self.total_delivered
        }


@dataclass(frozen=True)
class AgentState:
    """
    派送智能体状态 - 跨tick持久化，仅由调度器的单步函数更新

    不变式：delivering 为 True 当且仅当 current_order_number 不为 None。
    current_destination 在承诺订单时确定，之后不再根据房屋表重新计算。
    """
    delivering: bool = False
    current_order_number: Optional[int] = None
    current_destination: Position = (0.0, 0.0)
    urgency: UrgencyStatus = UrgencyStatus.NORMAL

    def __post_init__(self):
        """校验承诺不变式"""
        if self.delivering and self.current_order_number is None:
            raise ValueError("AgentState: delivering requires current_order_number")
        if not self.delivering and self.current_order_number is not None:
            raise ValueError(
                f"AgentState: idle state cannot hold order {self.current_order_number}"
            )

    @property
    def phase(self) -> DispatcherPhase:
        return DispatcherPhase.EN_ROUTE if self.delivering else DispatcherPhase.IDLE

    def commit(self, order_number: int, destination: Position) -> 'AgentState':
        """承诺配送指定订单"""
        return replace(
            self,
            delivering=True,
            current_order_number=order_number,
            current_destination=destination
        )

    def cleared(self) -> 'AgentState':
        """送达后清除承诺，紧急状态复位"""
        return replace(
            self,
            delivering=False,
            current_order_number=None,
            urgency=UrgencyStatus.NORMAL
        )

    def with_urgency(self, urgency: UrgencyStatus) -> 'AgentState':
        return replace(self, urgency=urgency)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            'delivering': self.delivering,
            'current_order_number': self.current_order_number,
            'current_destination': self.current_destination,
            'urgency': self.urgency.value,
            'phase': self.phase.value
        }


@dataclass
class SimulationEvent:
    """仿真事件记录"""
    timestamp: float
    event_type: str  # 'order_arrival', 'order_taken', 'pizza_grabbed', 'order_delivered'
    entity_id: int  # 订单号或房屋号
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            'timestamp': self.timestamp,
            'event_type': self.event_type,
            'entity_id': self.entity_id,
            'details': self.details
        }
