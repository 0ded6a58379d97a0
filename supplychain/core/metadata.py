"""依赖图提取 — 调用 `cargo metadata` 并取出来自 crates.io 的包

只有 source 指向 crates.io 索引的包才有注册表发布者；
path / git 依赖以及其他注册表的包被过滤掉。
"""

from __future__ import annotations

import json
import logging
from typing import Any

from supplychain.core.exceptions import ExecutionError
from supplychain.core.registry.models import Package
from supplychain.utils.shell import CommandExecutor, run_cmd

logger = logging.getLogger(__name__)

CRATES_IO_SOURCES = (
    "registry+https://github.com/rust-lang/crates.io-index",
    "sparse+https://index.crates.io/",
)


def is_crates_io(source: str | None) -> bool:
    return bool(source) and any(source.startswith(s) for s in CRATES_IO_SOURCES)


def parse_metadata(data: dict[str, Any]) -> list[Package]:
    """从 cargo metadata JSON 中取出 crates.io 包

    保留 cargo 给出的顺序，按 (name, version) 去重。
    """
    packages: list[Package] = []
    seen: set[Package] = set()
    for entry in data.get("packages") or []:
        if not is_crates_io(entry.get("source")):
            continue
        pkg = Package(name=entry["name"], version=entry.get("version"))
        if pkg not in seen:
            seen.add(pkg)
            packages.append(pkg)
    return packages


def sourced_dependencies(
    metadata_args: list[str] | None = None,
    *,
    executor: CommandExecutor | None = None,
    cargo: str = "cargo",
) -> list[Package]:
    """运行 cargo metadata 并返回依赖图中的 crates.io 包

    Raises:
        ExecutionError: cargo 执行失败或输出不是合法 JSON
    """
    args = [cargo, "metadata", "--format-version", "1", *(metadata_args or [])]
    result = run_cmd(args, executor=executor, label="cargo metadata")
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ExecutionError(f"cargo metadata 输出不是合法 JSON: {e}") from e
    if not isinstance(data, dict):
        raise ExecutionError("cargo metadata 输出不是 JSON 对象")
    packages = parse_metadata(data)
    logger.info("依赖图中有 %d 个 crates.io 包", len(packages))
    return packages
