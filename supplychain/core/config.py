"""集中配置管理

替代各模块散落的 DEFAULT_* 常量，提供统一的配置入口。
支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta

from supplychain.core.exceptions import ConfigError
from supplychain.utils.duration import parse_duration
from supplychain.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "supplychain.yml"


def _default_cache_dir() -> str:
    base = os.environ.get("XDG_CACHE_HOME") or os.path.join(
        os.path.expanduser("~"), ".cache",
    )
    return os.path.join(base, "supplychain")


@dataclass
class Config:
    """全局配置"""

    # 缓存
    cache_dir: str = field(default_factory=_default_cache_dir)
    cache_max_age: str = "48h"

    # 远端
    dump_url: str = "https://static.crates.io/db-dump.tar.gz"
    api_url: str = "https://crates.io/api/v1"
    user_agent: str = "supplychain (https://github.com/rust-secure-code/cargo-supply-chain)"

    # 网络
    request_timeout: float = 30.0
    download_timeout: float = 600.0
    max_workers: int = 4

    # 重试 / 限速 (crates.io 要求每秒最多 1 个请求)
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    min_interval: float = 1.0
    refresh_attempts: int = 2
    refresh_delay: float = 5.0

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    @property
    def max_age(self) -> timedelta:
        """cache_max_age 解析后的时长"""
        try:
            return parse_duration(self.cache_max_age)
        except ValueError as e:
            raise ConfigError(f"cache_max_age 无效: {e}") from e

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件 {path} 无效: {e}") from e
        cfg.extra = extra
        return cfg


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = DEFAULT_CONFIG_FILE) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
