"""
PizzaDispatcher 测试
使用记录指令的内存假世界验证订单选择、抢占、取餐门控与配送状态机
"""

import sys
from pathlib import Path

# 添加项目根目录到路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from pizza_delivery.simulation.entities import AgentState, Order, UrgencyStatus
from pizza_delivery.simulation.world import DeliveryWorld
from pizza_delivery.simulation.dispatchers.pizza_dispatcher import (
    DispatcherConfig,
    PizzaDispatcher,
    find_closest_order,
    find_most_urgent_order,
    should_preempt,
    step,
)

HOUSE_A = (500.0, 0.0)
HOUSE_B = (0.0, 800.0)
HOUSE_C = (700.0, 700.0)


class FakeWorld:
    """按位置查表返回距离的假世界，记录所有动作"""

    def __init__(self, orders=None, locations=None, distances=None, times_left=None,
                 max_speed=100.0, pizza_amount=1, grab_result=True, deliver_result=True):
        self.orders = list(orders or [])
        self.locations = dict(locations or {})
        self.distances = dict(distances or {})
        self.times_left = dict(times_left or {})
        self.max_speed = max_speed
        self.pizza_amount = pizza_amount
        self.grab_result = grab_result
        self.deliver_result = deliver_result
        self.waiting_houses = {order.house_number for order in self.orders}

        self.moves = []
        self.delivery_attempts = []
        self.grab_attempts = 0

    def get_pizza_orders(self):
        return list(self.orders)

    def get_house_locations(self):
        return dict(self.locations)

    def get_house_time_left(self, house_number):
        return self.times_left.get(house_number, 100.0)

    def get_distance_to_destination(self, destination):
        return self.distances[destination]

    def get_character_max_speed(self):
        return self.max_speed

    def get_pizza_amount(self):
        return self.pizza_amount

    def try_grab_pizza(self):
        self.grab_attempts += 1
        if self.grab_result:
            self.pizza_amount += 1
        return self.grab_result

    def try_deliver_pizza(self, order_number):
        self.delivery_attempts.append(order_number)
        if not self.deliver_result:
            return False
        delivered = [o for o in self.orders if o.order_number == order_number]
        for order in delivered:
            self.orders.remove(order)
            if not any(o.house_number == order.house_number for o in self.orders):
                self.waiting_houses.discard(order.house_number)
        self.pizza_amount -= 1
        return True

    def waits_house_pizza_delivery(self, house_number):
        return house_number in self.waiting_houses

    def set_new_move_destination(self, destination):
        self.moves.append(destination)


def two_house_world(**kwargs):
    """订单1 -> 房屋0 (距离500)，订单2 -> 房屋1 (距离800)"""
    params = dict(
        orders=[Order(1, 0), Order(2, 1)],
        locations={0: HOUSE_A, 1: HOUSE_B},
        distances={HOUSE_A: 500.0, HOUSE_B: 800.0},
        times_left={0: 100.0, 1: 100.0},
    )
    params.update(kwargs)
    return FakeWorld(**params)


def en_route_state(order_number=1, destination=HOUSE_A, urgency=UrgencyStatus.NORMAL):
    return AgentState(delivering=True,
                      current_order_number=order_number,
                      current_destination=destination,
                      urgency=urgency)


def test_fake_world_satisfies_protocol():
    assert isinstance(FakeWorld(), DeliveryWorld)


# ============================================================
# 空闲分支：订单选择
# ============================================================

def test_idle_without_orders_is_noop():
    world = FakeWorld()
    state = AgentState()

    new_state = step(state, world)

    assert new_state == state
    assert world.moves == []
    assert world.grab_attempts == 0


def test_idle_selects_closest_order():
    world = FakeWorld(
        orders=[Order(1, 0), Order(2, 1), Order(3, 2)],
        locations={0: HOUSE_A, 1: HOUSE_B, 2: HOUSE_C},
        distances={HOUSE_A: 500.0, HOUSE_B: 200.0, HOUSE_C: 700.0},
    )

    state = step(AgentState(), world)

    assert state.delivering
    assert state.current_order_number == 2
    assert state.current_destination == HOUSE_B
    assert state.urgency is UrgencyStatus.NORMAL
    assert world.moves == [HOUSE_B]


def test_idle_distance_tie_keeps_lowest_index():
    world = two_house_world(distances={HOUSE_A: 400.0, HOUSE_B: 400.0})

    state = step(AgentState(), world)

    assert state.current_order_number == 1


def test_scenario_urgent_order_preempts_closest():
    # 剩余6秒，路程 800/100 = 8秒，6 - 8 = -2 < 5
    world = two_house_world(times_left={0: 100.0, 1: 6.0})

    state = step(AgentState(), world)

    assert state.current_order_number == 2
    assert state.current_destination == HOUSE_B
    assert state.urgency is UrgencyStatus.SELECTED
    assert world.moves == [HOUSE_B]


def test_no_preemption_when_slack_is_sufficient():
    # 20 - 8 = 12 >= 5
    world = two_house_world(times_left={0: 100.0, 1: 20.0})

    state = step(AgentState(), world)

    assert state.current_order_number == 1
    assert state.urgency is UrgencyStatus.NORMAL


def test_preemption_does_not_fire_after_arrived():
    world = two_house_world(times_left={0: 100.0, 1: 6.0})

    state = step(AgentState(urgency=UrgencyStatus.ARRIVED), world)

    assert state.current_order_number == 1
    assert state.urgency is UrgencyStatus.ARRIVED


def test_pickup_failure_blocks_commitment():
    world = two_house_world(pizza_amount=0, grab_result=False)

    state = step(AgentState(), world)

    assert not state.delivering
    assert state.current_order_number is None
    assert world.grab_attempts == 1
    assert world.moves == []


def test_pickup_failure_keeps_urgency_selection():
    world = two_house_world(times_left={0: 100.0, 1: 6.0}, pizza_amount=0, grab_result=False)

    state = step(AgentState(), world)

    assert not state.delivering
    assert state.urgency is UrgencyStatus.SELECTED


def test_pickup_success_then_commit():
    world = two_house_world(pizza_amount=0, grab_result=True)

    state = step(AgentState(), world)

    assert world.grab_attempts == 1
    assert state.current_order_number == 1


def test_no_pickup_attempt_when_carrying_pizza():
    world = two_house_world(pizza_amount=1)

    step(AgentState(), world)

    assert world.grab_attempts == 0


def test_orders_with_unknown_house_are_skipped():
    world = two_house_world(locations={1: HOUSE_B})

    state = step(AgentState(), world)

    assert state.current_order_number == 2


def test_zero_max_speed_forces_preemption():
    world = two_house_world(times_left={0: 100.0, 1: 50.0}, max_speed=0.0)

    state = step(AgentState(), world)

    assert state.current_order_number == 2
    assert state.urgency is UrgencyStatus.SELECTED


# ============================================================
# 配送中分支
# ============================================================

def test_scenario_out_of_range_reissues_move_without_delivery():
    world = two_house_world(distances={HOUSE_A: 400.0, HOUSE_B: 800.0})
    state = en_route_state()

    new_state = step(state, world)

    assert new_state == state
    assert world.moves == [HOUSE_A]
    assert world.delivery_attempts == []


def test_scenario_in_range_delivery_resets_to_idle():
    world = two_house_world(distances={HOUSE_A: 250.0, HOUSE_B: 800.0})

    state = step(en_route_state(), world)

    assert not state.delivering
    assert state.current_order_number is None
    assert state.urgency is UrgencyStatus.NORMAL
    assert world.delivery_attempts == [1]
    assert world.moves == []


def test_failed_delivery_reissues_move():
    world = two_house_world(distances={HOUSE_A: 250.0, HOUSE_B: 800.0}, deliver_result=False)
    state = en_route_state()

    new_state = step(state, world)

    assert new_state == state
    assert world.delivery_attempts == [1]
    assert world.moves == [HOUSE_A]


def test_selected_advances_to_arrived_in_range():
    world = two_house_world(distances={HOUSE_A: 250.0, HOUSE_B: 800.0}, deliver_result=False)

    state = step(en_route_state(urgency=UrgencyStatus.SELECTED), world)

    assert state.delivering
    assert state.urgency is UrgencyStatus.ARRIVED


def test_selected_resets_to_normal_after_delivery():
    world = two_house_world(distances={HOUSE_A: 250.0, HOUSE_B: 800.0})

    state = step(en_route_state(urgency=UrgencyStatus.SELECTED), world)

    assert state.urgency is UrgencyStatus.NORMAL


def test_exactly_at_radius_attempts_delivery_without_arrival():
    world = two_house_world(distances={HOUSE_A: 300.0, HOUSE_B: 800.0}, deliver_result=False)

    state = step(en_route_state(urgency=UrgencyStatus.SELECTED), world)

    assert world.delivery_attempts == [1]
    assert state.urgency is UrgencyStatus.SELECTED


def test_destination_is_not_rederived_from_location_table():
    world = two_house_world(distances={HOUSE_A: 400.0, HOUSE_B: 800.0, HOUSE_C: 900.0})
    world.locations[0] = HOUSE_C

    step(en_route_state(), world)

    assert world.moves == [HOUSE_A]


def test_post_delivery_scan_matches_equal_distance_not_deadline():
    # 送达后若另一待配送房屋的距离恰好等于刚测得的距离，
    # 紧急状态被置为 ARRIVED，与该房屋的剩余时间无关
    world = two_house_world(distances={HOUSE_A: 250.0, HOUSE_B: 250.0},
                            times_left={0: 100.0, 1: 100.0})

    state = step(en_route_state(), world)

    assert not state.delivering
    assert state.urgency is UrgencyStatus.ARRIVED


def test_post_delivery_scan_ignores_houses_at_other_distances():
    world = two_house_world(distances={HOUSE_A: 250.0, HOUSE_B: 251.0},
                            times_left={0: 100.0, 1: 1.0})

    state = step(en_route_state(), world)

    assert state.urgency is UrgencyStatus.NORMAL


def test_post_delivery_scan_requires_house_still_waiting():
    # 距离相等，但房屋1已不再等待配送
    world = two_house_world(distances={HOUSE_A: 250.0, HOUSE_B: 250.0})
    world.waiting_houses.discard(1)

    state = step(en_route_state(), world)

    assert not state.delivering
    assert state.urgency is UrgencyStatus.NORMAL


def test_post_delivery_arrived_blocks_next_preemption():
    world = two_house_world(distances={HOUSE_A: 250.0, HOUSE_B: 250.0},
                            times_left={0: 100.0, 1: 1.0})
    world.orders.append(Order(3, 2))
    world.locations[2] = HOUSE_C
    world.distances[HOUSE_C] = 100.0
    world.waiting_houses.add(2)

    state = step(en_route_state(), world)
    assert state.urgency is UrgencyStatus.ARRIVED

    state = step(state, world)

    # 房屋1最紧急，但 ARRIVED 抑制抢占，选择最近的订单3
    assert state.current_order_number == 3
    assert state.urgency is UrgencyStatus.ARRIVED


# ============================================================
# 辅助函数与配置
# ============================================================

def test_find_helpers_return_first_minimum():
    world = FakeWorld(
        locations={0: HOUSE_A, 1: HOUSE_B},
        distances={HOUSE_A: 10.0, HOUSE_B: 10.0},
        times_left={0: 3.0, 1: 3.0},
    )
    orders = [Order(7, 1), Order(8, 0)]

    closest, distance = find_closest_order(world, orders, world.locations)
    urgent, time_left = find_most_urgent_order(world, orders)

    assert closest == Order(7, 1)
    assert distance == 10.0
    assert urgent == Order(7, 1)
    assert time_left == 3.0


@pytest.mark.parametrize("time_left, urgency, expected", [
    (12.9, UrgencyStatus.NORMAL, True),
    (13.0, UrgencyStatus.NORMAL, False),
    (12.9, UrgencyStatus.SELECTED, True),
    (-50.0, UrgencyStatus.ARRIVED, False),
])
def test_should_preempt(time_left, urgency, expected):
    # 路程时间 800 / 100 = 8
    assert should_preempt(time_left, 800.0, 100.0, urgency, 5.0) is expected


def test_should_preempt_follows_float_division_for_degenerate_speed():
    # 0/0 为 nan，比较为假，不抢占
    assert should_preempt(50.0, 0.0, 0.0, UrgencyStatus.NORMAL, 5.0) is False
    # 正距离除以0为 inf，必然抢占
    assert should_preempt(50.0, 10.0, 0.0, UrgencyStatus.NORMAL, 5.0) is True
    # 负速度得到负的路程时间: 10 - (-8) = 18
    assert should_preempt(10.0, 800.0, -100.0, UrgencyStatus.NORMAL, 5.0) is False
    assert should_preempt(-10.0, 800.0, -100.0, UrgencyStatus.NORMAL, 5.0) is True


def test_custom_delivery_radius():
    world = two_house_world(distances={HOUSE_A: 250.0, HOUSE_B: 800.0})
    config = DispatcherConfig(delivery_radius=200.0)

    state = step(en_route_state(), world, config)

    assert state.delivering
    assert world.delivery_attempts == []


def test_dispatcher_config_validation():
    with pytest.raises(ValueError):
        DispatcherConfig(delivery_radius=0.0)
    with pytest.raises(ValueError):
        DispatcherConfig(urgency_margin=-1.0)


def test_dispatcher_config_from_dict():
    config = DispatcherConfig.from_dict({'delivery_radius': 150})

    assert config.delivery_radius == 150.0
    assert config.urgency_margin == 5.0
    assert DispatcherConfig.from_dict(None) == DispatcherConfig()


# ============================================================
# PizzaDispatcher 多帧驱动
# ============================================================

def test_dispatcher_ticks_keep_commit_invariant():
    world = two_house_world()
    events = []
    dispatcher = PizzaDispatcher(world, listener=lambda *args: events.append(args))

    # 帧1: 接单1；帧2: 距离400，继续前往；帧3: 进入范围并送达
    script = [
        {HOUSE_A: 500.0, HOUSE_B: 800.0},
        {HOUSE_A: 400.0, HOUSE_B: 700.0},
        {HOUSE_A: 120.0, HOUSE_B: 600.0},
        {HOUSE_A: 120.0, HOUSE_B: 600.0},
    ]
    for distances in script:
        world.distances = distances
        before = dispatcher.state
        assert before.delivering == (before.current_order_number is not None)
        after = dispatcher.tick(0.016)
        assert after.delivering == (after.current_order_number is not None)

    assert dispatcher.tick_count == 4
    assert dispatcher.delivered_count == 1
    # 帧4重新接单2
    assert dispatcher.state.current_order_number == 2
    assert [e[0] for e in events] == ['order_taken', 'order_delivered', 'order_taken']
    assert events[0][1] == 1
    assert events[0][2]['house_number'] == 0
