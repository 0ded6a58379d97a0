"""CLI — 快照缓存命令"""

from __future__ import annotations

from datetime import timedelta

import click

from supplychain.cli import _fail, _service, cache_max_age_option
from supplychain.core.exceptions import SupplyChainError


def register(group: click.Group) -> None:
    group.add_command(update)


@click.command()
@cache_max_age_option
@click.option("--force", is_flag=True, help="即使快照仍新鲜也重新下载")
def update(max_age: timedelta | None, force: bool) -> None:
    """下载 crates.io 每日数据库转储，加速其他命令"""
    try:
        snapshot = _service(max_age).update(force=force)
    except SupplyChainError as e:
        raise _fail(e) from e
    click.echo(f"快照就绪: {snapshot.root} (获取于 {snapshot.acquired_at.isoformat()})")
