"""外部命令执行工具 — 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，测试时可注入假实现，无需 patch subprocess。
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol

from supplychain.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """命令执行器协议"""

    def execute(
        self,
        args: list[str],
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）"""

    def execute(
        self,
        args: list[str],
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        r = subprocess.run(
            args, capture_output=True, text=True,
            cwd=cwd, check=False, timeout=timeout,
        )
        return CommandResult(returncode=r.returncode, stdout=r.stdout, stderr=r.stderr)


def run_cmd(
    args: list[str],
    *,
    executor: CommandExecutor | None = None,
    cwd: str | None = None,
    timeout: float | None = None,
    label: str = "cmd",
) -> CommandResult:
    """执行命令，失败抛 ExecutionError

    Args:
        args: 命令及参数
        executor: 执行器，不传则使用 LocalExecutor
        cwd: 工作目录
        timeout: 超时秒数
        label: 日志标签
    """
    executor = executor or LocalExecutor()
    logger.info("  %s: %s", label, " ".join(args))
    try:
        r = executor.execute(args, cwd=cwd, timeout=timeout)
    except FileNotFoundError as e:
        raise ExecutionError(f"{label}失败: 找不到命令 {args[0]}") from e
    except subprocess.TimeoutExpired as e:
        raise ExecutionError(f"{label}超时（{timeout}秒）") from e
    if not r.success:
        raise ExecutionError(f"{label}失败 (rc={r.returncode}): {r.stderr[:500]}")
    return r
