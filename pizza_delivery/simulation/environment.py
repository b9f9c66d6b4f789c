"""
仿真环境模块
基于 SimPy 的单智能体披萨派送参考世界，实现 DeliveryWorld 协议并按帧驱动调度器
"""

import simpy
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, List, Optional, Any, Sequence, Mapping
import logging
from collections import defaultdict
import json

from .entities import House, Order, Position, SimulationEvent
from .dispatchers.pizza_dispatcher import DispatcherConfig, PizzaDispatcher

logger = logging.getLogger(__name__)


class SimulationEnvironment:
    """仿真环境类"""

    def __init__(self,
                 houses: Sequence[House],
                 config: Dict[str, Any]):
        """
        初始化仿真环境

        Args:
            houses: 房屋列表
            config: 仿真配置（simulation / world / dispatcher 段合并后的字典）
        """
        # SimPy 环境
        self.env = simpy.Environment()

        # 配置
        self.config = config
        self.simulation_duration = config.get('simulation_duration', 600.0)
        self.tick_interval = config.get('tick_interval', 0.1)  # 帧间隔(秒)
        if self.tick_interval <= 0:
            raise ValueError(f"tick_interval must be positive, got {self.tick_interval}")

        world_config = config.get('world', {})
        self.max_speed = float(world_config.get('agent_max_speed', 600.0))
        self.bakery_location: Position = tuple(world_config.get('bakery_location', (0.0, 0.0)))
        self.pickup_radius = float(world_config.get('pickup_radius', 200.0))
        self.pizza_capacity = int(world_config.get('pizza_capacity', 1))

        # 智能体运行时状态
        self.agent_position = np.array(world_config.get('agent_start', self.bakery_location), dtype=float)
        self.move_destination: Optional[Position] = None
        self.pizza_amount = 0
        self.distance_traveled = 0.0

        # 实体存储
        self.houses: Dict[int, House] = {house.house_number: house for house in houses}
        self.orders: List[Order] = []  # 未完成订单，按下单顺序
        self.scheduled_orders: List[Dict[str, Any]] = []  # 尚未到达的脚本订单
        self.delivered_orders: List[int] = []

        # 事件记录
        self.events: List[SimulationEvent] = []

        self.stats = {
            'total_orders': 0,
            'delivered_orders': 0,
            'late_deliveries': 0,
            'pizzas_grabbed': 0
        }

        dispatcher_config = DispatcherConfig.from_dict(config.get('dispatcher', {}))
        self.dispatcher = PizzaDispatcher(self, dispatcher_config, listener=self.record_event)

        logger.info("仿真环境初始化完成")
        logger.info(f"房屋数: {len(self.houses)}, 取餐点: {self.bakery_location}")
        logger.info(f"仿真时长: {self.simulation_duration}秒, 帧间隔: {self.tick_interval}秒")

    # ------------------------------------------------------------
    # DeliveryWorld 协议
    # ------------------------------------------------------------

    def get_pizza_orders(self) -> List[Order]:
        return list(self.orders)

    def get_house_locations(self) -> Dict[int, Position]:
        return {number: house.coords for number, house in self.houses.items()}

    def get_house_time_left(self, house_number: int) -> float:
        return self.houses[house_number].get_time_left(self.env.now)

    def get_distance_to_destination(self, destination: Position) -> float:
        return float(np.linalg.norm(np.asarray(destination, dtype=float) - self.agent_position))

    def get_character_max_speed(self) -> float:
        return self.max_speed

    def get_pizza_amount(self) -> int:
        return self.pizza_amount

    def try_grab_pizza(self) -> bool:
        """在取餐点范围内且未满载时取一份披萨"""
        if self.pizza_amount >= self.pizza_capacity:
            return False
        if self.get_distance_to_destination(self.bakery_location) > self.pickup_radius:
            # 取餐失败时智能体自动返回取餐点
            self.set_new_move_destination(self.bakery_location)
            return False

        self.pizza_amount += 1
        self.stats['pizzas_grabbed'] += 1
        self.record_event('pizza_grabbed', self.pizza_amount, {'position': self._position_tuple()})
        return True

    def try_deliver_pizza(self, order_number: int) -> bool:
        """携带披萨且位于订单房屋范围内时送达"""
        order = next((o for o in self.orders if o.order_number == order_number), None)
        if order is None or self.pizza_amount == 0:
            return False

        house = self.houses[order.house_number]
        radius = self.dispatcher.config.delivery_radius
        if self.get_distance_to_destination(house.coords) > radius:
            return False

        time_left = house.get_time_left(self.env.now)
        self.orders.remove(order)
        self.pizza_amount -= 1
        house.complete_delivery(self.env.now)
        self.delivered_orders.append(order_number)
        self.stats['delivered_orders'] += 1
        if time_left < 0:
            self.stats['late_deliveries'] += 1

        logger.debug(f"[{self.env.now:.1f}s] 订单 {order_number} 交付，剩余时间 {time_left:.1f}")
        return True

    def waits_house_pizza_delivery(self, house_number: int) -> bool:
        house = self.houses.get(house_number)
        return house is not None and house.waits_delivery()

    def set_new_move_destination(self, destination: Position) -> None:
        self.move_destination = (float(destination[0]), float(destination[1]))

    # ------------------------------------------------------------
    # 订单加载
    # ------------------------------------------------------------

    def add_order(self, order_number: int, house_number: int, arrival_time: float = 0.0) -> None:
        """
        添加脚本订单

        Args:
            order_number: 订单号
            house_number: 房屋号
            arrival_time: 订单进入系统的仿真时间
        """
        if house_number not in self.houses:
            raise ValueError(f"Order {order_number}: unknown house {house_number}")
        if arrival_time < 0:
            raise ValueError(f"Order {order_number}: arrival_time cannot be negative")

        self.scheduled_orders.append({
            'order_number': int(order_number),
            'house_number': int(house_number),
            'arrival_time': float(arrival_time)
        })
        self.stats['total_orders'] += 1

    def load_orders_from_csv(self, orders_file: Path) -> None:
        """
        从CSV加载订单（列: order_number, house_number, arrival_time）

        Args:
            orders_file: 订单文件路径
        """
        orders_file = Path(orders_file)
        if not orders_file.exists():
            raise FileNotFoundError(f"订单文件不存在: {orders_file}")

        df = pd.read_csv(orders_file)
        required = {'order_number', 'house_number'}
        missing = required - set(df.columns)
        if missing:
            raise ValueError(f"订单文件缺少列: {sorted(missing)}")
        if 'arrival_time' not in df.columns:
            df['arrival_time'] = 0.0

        for row in df.itertuples(index=False):
            self.add_order(row.order_number, row.house_number, row.arrival_time)

        logger.info(f"从 {orders_file} 加载了 {len(df)} 个订单")

    # ------------------------------------------------------------
    # 仿真进程
    # ------------------------------------------------------------

    def record_event(self, event_type: str, entity_id: int, details: Dict[str, Any] = None) -> None:
        """
        记录仿真事件

        Args:
            event_type: 事件类型
            entity_id: 实体ID
            details: 详细信息
        """
        event = SimulationEvent(
            timestamp=self.env.now,
            event_type=event_type,
            entity_id=entity_id,
            details=details or {}
        )
        self.events.append(event)

    def order_arrival_process(self):
        """
        订单到达过程（SimPy进程）
        按照订单的到达时间依次释放到订单列表
        """
        logger.info("启动订单到达进程")

        for scheduled in sorted(self.scheduled_orders, key=lambda o: o['arrival_time']):
            yield self.env.timeout(max(scheduled['arrival_time'] - self.env.now, 0.0))

            order = Order(scheduled['order_number'], scheduled['house_number'])
            self.orders.append(order)
            self.houses[order.house_number].place_order(self.env.now)

            self.record_event('order_arrival', order.order_number, {'house_number': order.house_number})
            logger.debug(f"[{self.env.now:.1f}s] 订单 {order.order_number} 到达 (待配送: {len(self.orders)})")

    def tick_process(self):
        """
        帧驱动过程（SimPy进程）
        每帧先推进移动，再调用一次调度器
        """
        logger.info(f"帧进程启动，间隔: {self.tick_interval}秒")

        while True:
            yield self.env.timeout(self.tick_interval)
            self._advance_agent(self.tick_interval)
            self.dispatcher.tick(self.tick_interval)

    def _advance_agent(self, dt: float) -> None:
        """沿直线向移动目标前进至多 max_speed * dt"""
        if self.move_destination is None:
            return

        offset = np.asarray(self.move_destination, dtype=float) - self.agent_position
        remaining = float(np.linalg.norm(offset))
        if remaining == 0.0:
            return

        travel = min(self.max_speed * dt, remaining)
        self.agent_position = self.agent_position + offset / remaining * travel
        self.distance_traveled += travel

    def _position_tuple(self) -> Position:
        return (float(self.agent_position[0]), float(self.agent_position[1]))

    def initialize_processes(self):
        """初始化所有仿真进程（不运行）"""
        self.env.process(self.order_arrival_process())
        self.env.process(self.tick_process())

    def run(self, until: Optional[float] = None):
        """
        运行仿真

        Args:
            until: 仿真终止时间，若为None则使用配置的simulation_duration
        """
        if until is None:
            until = self.simulation_duration

        logger.info(f"开始仿真，时长: {until}秒")

        self.initialize_processes()
        self.env.run(until=until)

        logger.info("仿真完成")
        self._print_summary()

    def _print_summary(self):
        """打印仿真摘要"""
        logger.info("=" * 60)
        logger.info("仿真摘要")
        logger.info("=" * 60)
        logger.info(f"仿真时长: {self.env.now:.1f}秒")
        logger.info(f"总订单数: {self.stats['total_orders']}")
        logger.info(f"已送达: {self.stats['delivered_orders']} (超时 {self.stats['late_deliveries']})")
        logger.info(f"待配送: {len(self.orders)}")
        logger.info(f"行驶距离: {self.distance_traveled:.1f}")
        logger.info("=" * 60)

    def get_statistics(self) -> Dict[str, Any]:
        """
        获取仿真统计信息

        Returns:
            统计字典
        """
        stats = {
            'simulation_time': self.env.now,
            'total_orders': self.stats['total_orders'],
            'pending_orders': len(self.orders),
            'delivered_orders': self.stats['delivered_orders'],
            'late_deliveries': self.stats['late_deliveries'],
            'pizzas_grabbed': self.stats['pizzas_grabbed'],
            'distance_traveled': self.distance_traveled,
            'total_events': len(self.events),
            'dispatcher_ticks': self.dispatcher.tick_count,
            'agent_state': self.dispatcher.state.to_dict()
        }

        event_counts = defaultdict(int)
        for event in self.events:
            event_counts[event.event_type] += 1
        stats['event_counts'] = dict(event_counts)

        return stats

    def save_events(self, output_file: Path) -> None:
        """
        保存事件日志

        Args:
            output_file: 输出文件路径（.csv 或 .json）
        """
        events_df = pd.DataFrame([event.to_dict() for event in self.events],
                                 columns=['timestamp', 'event_type', 'entity_id', 'details'])

        output_file = Path(output_file)
        output_file.parent.mkdir(parents=True, exist_ok=True)

        if output_file.suffix == '.csv':
            events_df.to_csv(output_file, index=False, encoding='utf-8')
        elif output_file.suffix == '.json':
            events_df.to_json(output_file, orient='records', indent=2)
        else:
            raise ValueError(f"Unsupported file format: {output_file.suffix}")

        logger.info(f"事件日志已保存到 {output_file}，共 {len(events_df)} 条记录")

    def save_results(self, output_dir: Path) -> Dict[str, Path]:
        """
        保存仿真结果

        Args:
            output_dir: 输出目录

        Returns:
            保存的文件路径字典
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        saved_files = {}

        events_file = output_dir / "events.csv"
        self.save_events(events_file)
        saved_files['events'] = events_file

        stats_file = output_dir / "statistics.json"
        with open(stats_file, 'w', encoding='utf-8') as f:
            json.dump(self.get_statistics(), f, indent=2, ensure_ascii=False)
        saved_files['statistics'] = stats_file

        houses_df = pd.DataFrame([house.to_dict() for house in self.houses.values()])
        houses_file = output_dir / "houses_result.csv"
        houses_df.to_csv(houses_file, index=False, encoding='utf-8')
        saved_files['houses'] = houses_file

        logger.info(f"仿真结果已保存到: {output_dir}")
        return saved_files


def build_environment(config: Dict[str, Any],
                      orders: Optional[Sequence[Mapping[str, Any]]] = None) -> SimulationEnvironment:
    """
    根据配置字典构建仿真环境

    Args:
        config: 完整配置（包含 simulation / world / dispatcher / houses 段）
        orders: 可选订单列表，每项包含 order_number, house_number, arrival_time

    Returns:
        SimulationEnvironment实例
    """
    world_config = config.get('world', {})
    spoil_time = float(world_config.get('spoil_time', 60.0))

    houses = [
        House(
            house_number=int(entry['house_number']),
            coords=(float(entry['coords'][0]), float(entry['coords'][1])),
            spoil_time=float(entry.get('spoil_time', spoil_time))
        )
        for entry in config.get('houses', [])
    ]

    sim_config = dict(config.get('simulation', {}))
    sim_config['world'] = world_config
    sim_config['dispatcher'] = config.get('dispatcher', {})

    sim_env = SimulationEnvironment(houses, sim_config)
    if orders is None:
        orders = config.get('orders', [])
    for entry in orders:
        sim_env.add_order(entry['order_number'], entry['house_number'], entry.get('arrival_time', 0.0))

    return sim_env
