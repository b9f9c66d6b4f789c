"""
运行披萨派送仿真
加载配置与订单，驱动调度器直到仿真结束，并保存事件日志与统计结果
"""

import sys
import argparse
import logging
from pathlib import Path
from datetime import datetime

# 添加项目根目录到路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pizza_delivery.utils.config import get_config
from pizza_delivery.simulation import build_environment


def setup_logging(log_dir: Path, level: str = "INFO"):
    """设置日志"""
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"simulation_{timestamp}.log"

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"日志文件: {log_file}")

    return logger


def main():
    """主函数"""
    parser = argparse.ArgumentParser(
        description='单智能体披萨派送仿真'
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='配置文件路径 (default: config/config.yaml)'
    )
    parser.add_argument(
        '--orders',
        type=str,
        default=None,
        help='订单CSV文件，覆盖配置中的 orders 段'
    )
    parser.add_argument(
        '--duration',
        type=float,
        default=None,
        help='覆盖配置中的仿真时长（秒）'
    )
    parser.add_argument(
        '--output',
        type=str,
        default=None,
        help='结果输出目录 (default: outputs/results)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='调试模式（DEBUG日志）'
    )

    args = parser.parse_args()

    config = get_config(args.config)
    level = 'DEBUG' if args.debug else config.get_log_level()
    logger = setup_logging(config.get_output_dir("logs"), level)

    logger.info("=" * 60)
    logger.info("披萨派送仿真")
    logger.info("=" * 60)

    if args.orders:
        sim_env = build_environment(config.config, orders=[])
        sim_env.load_orders_from_csv(Path(args.orders))
    else:
        sim_env = build_environment(config.config)

    sim_config = config.get_simulation_config()
    duration = args.duration if args.duration is not None else sim_config.get('simulation_duration')
    logger.info(f"仿真时长: {duration}秒, 帧间隔: {sim_config.get('tick_interval')}秒")

    sim_env.run(until=duration)

    output_dir = Path(args.output) if args.output else config.get_output_dir("results")
    saved = sim_env.save_results(output_dir)

    stats = sim_env.get_statistics()
    print(f"\n已送达 {stats['delivered_orders']}/{stats['total_orders']} 个订单 "
          f"(超时 {stats['late_deliveries']})")
    for name, path in saved.items():
        print(f"  {name}: {path}")


if __name__ == "__main__":
    main()
