"""supplychain 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

from datetime import timedelta

import click
import yaml

from supplychain import __version__
from supplychain.core.config import DEFAULT_CONFIG_FILE, get_config, init_config
from supplychain.core.exceptions import SupplyChainError
from supplychain.services.publisher_service import PublisherService
from supplychain.utils.duration import parse_duration
from supplychain.utils.logger import setup_logging_from_env


def _parse_max_age(
    ctx: click.Context, param: click.Parameter, value: str | None,
) -> timedelta | None:
    """--cache-max-age 回调：`1w`、`1d 6h` 等人类可读时长"""
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _service(max_age: timedelta | None) -> PublisherService:
    return PublisherService(get_config(), max_age=max_age)


def _fail(e: SupplyChainError) -> click.ClickException:
    """业务异常转成 click 错误：输出 `Error: <消息>`，退出码 1"""
    return click.ClickException(str(e))


cache_max_age_option = click.option(
    "--cache-max-age", "max_age", default=None, callback=_parse_max_age,
    help="快照在此时长内视为有效，如 1w、1d 6h（默认读取配置，48h）",
)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=DEFAULT_CONFIG_FILE, help="配置文件路径")
def main(config_path: str) -> None:
    """supplychain - 列出依赖图中每个 crate 的 crates.io 发布者"""
    setup_logging_from_env()
    try:
        init_config(config_path)
    except (SupplyChainError, yaml.YAMLError, ValueError, OSError) as e:
        raise click.ClickException(f"无法加载配置 {config_path}: {e}") from e


# 注册各领域子命令
from supplychain.cli.cmd_cache import register as _reg_cache  # noqa: E402
from supplychain.cli.cmd_query import register as _reg_query  # noqa: E402

_reg_cache(main)
_reg_query(main)
