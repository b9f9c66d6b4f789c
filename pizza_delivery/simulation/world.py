"""
调度器依赖的外部世界接口
位置、距离、剩余时间查询以及移动、取餐、送餐动作均由外部仿真提供
"""

from typing import Mapping, Protocol, Sequence, runtime_checkable

from .entities import Order, Position


@runtime_checkable
class DeliveryWorld(Protocol):
    """
    派送世界协议

    所有查询同步返回；动作只返回成功标志，失败时调度器在下一个tick重试。
    同一个tick内发出的移动指令不能影响本tick已测得的距离。
    """

    def get_pizza_orders(self) -> Sequence[Order]:
        """当前未完成的订单（tick之间可能增减）"""
        ...

    def get_house_locations(self) -> Mapping[int, Position]:
        """房屋号 -> 位置"""
        ...

    def get_house_time_left(self, house_number: int) -> float:
        """房屋订单距离变质的剩余时间"""
        ...

    def get_distance_to_destination(self, destination: Position) -> float:
        """智能体当前位置到目标点的距离"""
        ...

    def get_character_max_speed(self) -> float:
        ...

    def get_pizza_amount(self) -> int:
        """当前携带的披萨数"""
        ...

    def try_grab_pizza(self) -> bool:
        """仅在取餐点附近成功"""
        ...

    def try_deliver_pizza(self, order_number: int) -> bool:
        """仅在目标房屋附近成功"""
        ...

    def waits_house_pizza_delivery(self, house_number: int) -> bool:
        ...

    def set_new_move_destination(self, destination: Position) -> None:
        """发出移动指令，对同一目标重复发出是幂等的"""
        ...
