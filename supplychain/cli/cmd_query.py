"""CLI — 发布者查询命令

`--` 之后的参数原样传给 cargo metadata，例如:
    supplychain crates -- --filter-platform=x86_64-unknown-linux-gnu
"""

from __future__ import annotations

from datetime import timedelta

import click

from supplychain.cli import _fail, _service, cache_max_age_option
from supplychain.core.exceptions import SupplyChainError
from supplychain.core.reporter import render


def register(group: click.Group) -> None:
    group.add_command(publishers)
    group.add_command(crates)


def _run(
    view: str, max_age: timedelta | None, offline: bool, fmt: str,
    metadata_args: tuple[str, ...],
) -> None:
    try:
        report = _service(max_age).audit(list(metadata_args), offline=offline)
    except SupplyChainError as e:
        raise _fail(e) from e
    click.echo(render(report, "json" if fmt == "json" else view), nl=False)


def _query_command(view: str, help_text: str) -> click.Command:
    @click.command(name=view, help=help_text)
    @cache_max_age_option
    @click.option("--offline", is_flag=True, help="只使用本地快照，不访问网络")
    @click.option("--format", "-f", "fmt", default="text", type=click.Choice(["text", "json"]))
    @click.argument("metadata_args", nargs=-1, type=click.UNPROCESSED)
    def command(
        max_age: timedelta | None, offline: bool, fmt: str,
        metadata_args: tuple[str, ...],
    ) -> None:
        _run(view, max_age, offline, fmt, metadata_args)

    return command


publishers = _query_command("publishers", "列出依赖图中所有 crates.io 发布者")
crates = _query_command("crates", "列出依赖图中所有包及每个包的 crates.io 发布者")
