"""
配置管理工具
用于加载和管理调度器与仿真配置
"""

import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional


class ConfigManager:
    """配置管理器类"""

    def __init__(self, config_path: Optional[str] = None):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径，默认为项目根目录下的config/config.yaml
        """
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            config_path = project_root / "config" / "config.yaml"

        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """
        加载配置文件

        Returns:
            配置字典
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"配置文件不存在: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)

        # 空文件返回 None
        return config or {}

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        获取配置项（支持点号分隔的嵌套路径）

        Args:
            key_path: 配置项路径，如 "dispatcher.delivery_radius"
            default: 默认值

        Returns:
            配置值

        Examples:
            >>> config = ConfigManager()
            >>> radius = config.get("dispatcher.delivery_radius", 300.0)
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_dispatcher_config(self) -> Dict[str, Any]:
        """获取调度器配置"""
        return self.config.get('dispatcher', {})

    def get_simulation_config(self) -> Dict[str, Any]:
        """获取仿真配置"""
        return self.config.get('simulation', {})

    def get_world_config(self) -> Dict[str, Any]:
        """获取参考世界配置"""
        return self.config.get('world', {})

    def get_houses(self) -> List[Dict[str, Any]]:
        """获取房屋列表"""
        return self.config.get('houses', [])

    def get_log_level(self) -> str:
        return self.get('logging.level', 'INFO')

    def get_project_root(self) -> Path:
        """获取项目根目录"""
        return Path(__file__).parent.parent.parent

    def get_output_dir(self, subdir: str = "") -> Path:
        """
        获取输出目录路径

        Args:
            subdir: 子目录名称（logs, results等）

        Returns:
            输出目录路径
        """
        output_dir = self.get_project_root() / "outputs"
        if subdir:
            output_dir = output_dir / subdir

        output_dir.mkdir(parents=True, exist_ok=True)
        return output_dir

    def update(self, key_path: str, value: Any) -> None:
        """
        更新配置项

        Args:
            key_path: 配置项路径
            value: 新值
        """
        keys = key_path.split('.')
        config = self.config

        for key in keys[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    def save(self, output_path: Optional[str] = None) -> None:
        """
        保存配置到文件

        Args:
            output_path: 输出路径，默认覆盖原配置文件
        """
        if output_path is None:
            output_path = self.config_path

        with open(output_path, 'w', encoding='utf-8') as f:
            yaml.dump(self.config, f, allow_unicode=True, default_flow_style=False)

    def __repr__(self) -> str:
        return f"ConfigManager(config_path='{self.config_path}')"


# 全局配置实例（单例模式）
_global_config: Optional[ConfigManager] = None


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """
    获取全局配置实例

    Args:
        config_path: 配置文件路径

    Returns:
        配置管理器实例
    """
    global _global_config

    if _global_config is None:
        _global_config = ConfigManager(config_path)

    return _global_config
