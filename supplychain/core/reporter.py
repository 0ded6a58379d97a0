"""报告生成器 - Strategy 模式

每种输出格式实现 ReportFormatter 接口，通过注册制工厂调用。
新增格式只需继承 ReportFormatter 并 register_formatter 即可。

所有格式都区分两种情况:
  - 没有发布者：查询成功，集合为空
  - 无法确定：查询失败，带失败注解
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any

from supplychain.core.registry.models import Account, TeamAccount, UserAccount, account_key
from supplychain.core.registry.resolver import ResolutionReport

logger = logging.getLogger(__name__)


def _account_label(account: Account) -> str:
    if isinstance(account, UserAccount):
        return f"{account.login} ({account.name})" if account.name else account.login
    suffix = "" if account.expanded else " [成员未展开]"
    return f"{account.login}{suffix}"


def _failure_lines(report: ResolutionReport) -> list[str]:
    lines = []
    failures = report.failures()
    if failures:
        lines.append("")
        lines.append(f"以下 {len(failures)} 个包无法完全确定发布者:")
        for pkg, res in failures.items():
            lines.append(f"  - {pkg}: [{res.error_kind}] {res.error}")
    return lines


class ReportFormatter(ABC):
    """报告格式化策略基类"""

    @abstractmethod
    def format(self, report: ResolutionReport) -> str:
        """将解析结果格式化为字符串"""


class PublishersFormatter(ReportFormatter):
    """按发布者分组：每个账号可以发布哪些包"""

    def format(self, report: ResolutionReport) -> str:
        crates_by_account: dict[tuple[str, int], list[str]] = defaultdict(list)
        accounts: dict[tuple[str, int], Account] = {}
        for pkg, res in report.items():
            for account in res.publishers:
                key = account_key(account)
                accounts[key] = account
                if pkg.name not in crates_by_account[key]:
                    crates_by_account[key].append(pkg.name)

        users = sorted(
            (a for a in accounts.values() if isinstance(a, UserAccount)),
            key=lambda a: a.login.lower(),
        )
        teams = sorted(
            (a for a in accounts.values() if isinstance(a, TeamAccount)),
            key=lambda a: a.login.lower(),
        )

        lines = [f"以下 {len(users)} 个用户可以发布依赖的更新:", ""]
        for i, user in enumerate(users, 1):
            crates = ", ".join(crates_by_account[account_key(user)])
            lines.append(f"{i:>4}. {_account_label(user)} 通过: {crates}")

        if teams:
            lines += ["", f"以下 {len(teams)} 个团队的成员也可以发布更新:", ""]
            for i, team in enumerate(teams, 1):
                crates = ", ".join(crates_by_account[account_key(team)])
                lines.append(f"{i:>4}. {_account_label(team)} 通过: {crates}")

        empty = [str(p) for p, r in report.items() if r.status == "empty"]
        if empty:
            lines += ["", f"以下 {len(empty)} 个包在 crates.io 上没有发布者: {', '.join(empty)}"]
        lines += _failure_lines(report)
        return "\n".join(lines) + "\n"


class CratesFormatter(ReportFormatter):
    """按包列出：每个包的发布者"""

    def format(self, report: ResolutionReport) -> str:
        lines = [f"依赖图中 {len(report)} 个包及其 crates.io 发布者:", ""]
        for i, (pkg, res) in enumerate(report.items(), 1):
            if res.status == "failed":
                who = "(无法确定)"
            elif res.status == "empty":
                who = "(无发布者)"
            else:
                who = ", ".join(_account_label(a) for a in res.publishers)
                if res.status == "partial":
                    who += " (不完整)"
            lines.append(f"{i:>4}. {pkg}: {who}")
        lines += _failure_lines(report)
        return "\n".join(lines) + "\n"


class JSONReportFormatter(ReportFormatter):
    def format(self, report: ResolutionReport) -> str:
        crates: list[dict[str, Any]] = []
        for pkg, res in report.items():
            entry: dict[str, Any] = {
                "name": pkg.name,
                "version": pkg.version,
                "status": res.status,
                "publishers": [self._account(a) for a in res.publishers],
            }
            if res.error:
                entry["error"] = {"kind": res.error_kind, "message": res.error}
            crates.append(entry)
        return json.dumps({"crates": crates}, indent=2, ensure_ascii=False) + "\n"

    @staticmethod
    def _account(account: Account) -> dict[str, Any]:
        if isinstance(account, UserAccount):
            return {"kind": "user", "id": account.id, "login": account.login, "name": account.name}
        return {
            "kind": "team", "id": account.id, "login": account.login,
            "org": account.org, "name": account.name, "expanded": account.expanded,
        }


_FORMATTERS: dict[str, ReportFormatter] = {
    "publishers": PublishersFormatter(),
    "crates": CratesFormatter(),
    "json": JSONReportFormatter(),
}


def register_formatter(name: str, formatter: ReportFormatter) -> None:
    """注册自定义报告格式"""
    _FORMATTERS[name] = formatter
    logger.debug("已注册报告格式: %s", name)


def get_formatter(name: str) -> ReportFormatter:
    formatter = _FORMATTERS.get(name)
    if formatter is None:
        raise ValueError(f"不支持的报告格式: {name}，可用: {', '.join(sorted(_FORMATTERS))}")
    return formatter


def render(report: ResolutionReport, fmt: str) -> str:
    return get_formatter(fmt).format(report)
