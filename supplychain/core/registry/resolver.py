"""发布者解析器

编排索引查询与在线 API 回退:
  1. 先查 RegistryIndex
  2. 未命中，或命中但含未展开团队 → 提交到线程池调用 API 补全
  3. 快照数据与 API 数据按账号 id 合并
  4. 按调用方输入顺序返回结果，与 API 响应到达顺序无关

单个包的 API 失败只记录为该包的注解，不会中断其余包的解析。
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Iterator

from supplychain.core.exceptions import ApiError
from supplychain.core.registry.api_client import RegistryApiClient
from supplychain.core.registry.index import RegistryIndex
from supplychain.core.registry.models import Package, PublisherSet, TeamAccount, UserAccount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """单个包的解析结果

    error 非空表示"无法完全确定发布者"，与"查询成功但没有发布者"严格区分。
    """

    publishers: PublisherSet
    error: str = ""
    error_kind: str = ""

    @property
    def status(self) -> str:
        if self.error:
            return "partial" if len(self.publishers) else "failed"
        return "found" if len(self.publishers) else "empty"

    @property
    def ok(self) -> bool:
        return not self.error


class ResolutionReport(Mapping):
    """有序映射 Package -> Resolution，迭代顺序即输入顺序"""

    def __init__(self, entries: Iterable[tuple[Package, Resolution]]) -> None:
        self._entries: dict[Package, Resolution] = dict(entries)

    def __getitem__(self, package: Package) -> Resolution:
        return self._entries[package]

    def __iter__(self) -> Iterator[Package]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def failures(self) -> dict[Package, Resolution]:
        return {p: r for p, r in self._entries.items() if not r.ok}


class PublisherResolver:
    """索引优先、API 回退的发布者解析器

    index 为 None 表示没有可用快照，所有包都走 API；
    api 为 None 表示离线模式，索引无法回答的部分记为失败注解。
    """

    def __init__(
        self,
        index: RegistryIndex | None,
        api: RegistryApiClient | None = None,
        max_workers: int = 4,
    ) -> None:
        self.index = index
        self.api = api
        self.max_workers = max(1, max_workers)
        self._team_cache: dict[int, tuple[UserAccount, ...]] = {}
        self._team_lock = threading.Lock()

    def resolve(self, packages: Iterable[Package]) -> ResolutionReport:
        packages = list(packages)
        settled: dict[str, Resolution] = {}
        pending: dict[str, PublisherSet | None] = {}

        for pkg in packages:
            if pkg.name in settled or pkg.name in pending:
                continue
            hit = self.index.publishers_of(pkg.name) if self.index is not None else None
            if hit is not None and not hit.unexpanded_teams():
                settled[pkg.name] = Resolution(hit)
            else:
                pending[pkg.name] = hit

        logger.info(
            "解析 %d 个包: 快照命中 %d, 需要在线查询 %d",
            len(settled) + len(pending), len(settled), len(pending),
        )

        if pending:
            settled.update(self._complete_all(pending))

        report = ResolutionReport((pkg, settled[pkg.name]) for pkg in packages)
        failed = report.failures()
        if failed:
            logger.warning(
                "%d 个包无法完全确定发布者: %s",
                len(failed), ", ".join(p.name for p in failed),
            )
        return report

    def _complete_all(self, pending: dict[str, PublisherSet | None]) -> dict[str, Resolution]:
        if self.api is None:
            return {name: self._offline(hit) for name, hit in pending.items()}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures: dict[str, Future[Resolution]] = {
                name: executor.submit(self._complete, name, hit)
                for name, hit in pending.items()
            }
            return {name: future.result() for name, future in futures.items()}

    @staticmethod
    def _offline(hit: PublisherSet | None) -> Resolution:
        if hit is None:
            return Resolution(PublisherSet(), "快照中没有该包（离线模式未在线查询）", "offline")
        teams = ", ".join(t.display_name for t in hit.unexpanded_teams())
        return Resolution(hit, f"团队成员未展开（离线模式）: {teams}", "offline")

    def _complete(self, name: str, hit: PublisherSet | None) -> Resolution:
        """在 worker 线程中执行：查询 owner 并展开团队"""
        assert self.api is not None
        if hit is None:
            try:
                publishers = self.api.owners_of(name, expand_teams=False)
            except ApiError as e:
                logger.warning("查询 %s 的发布者失败: %s", name, e)
                return Resolution(PublisherSet(), str(e), e.kind)
        else:
            publishers = hit

        errors: list[ApiError] = []
        for team in publishers.unexpanded_teams():
            try:
                members = self._members_of(team)
            except ApiError as e:
                logger.warning("展开团队 %s 失败 (%s): %s", team.display_name, name, e)
                errors.append(e)
                continue
            publishers = publishers.expand_team(team, members)

        if errors:
            return Resolution(
                publishers,
                "; ".join(str(e) for e in errors),
                errors[0].kind,
            )
        return Resolution(publishers)

    def _members_of(self, team: TeamAccount) -> tuple[UserAccount, ...]:
        """同一团队常拥有多个包，成员结果在本解析器内缓存"""
        with self._team_lock:
            cached = self._team_cache.get(team.id)
        if cached is not None:
            return cached
        assert self.api is not None
        members = self.api.team_members(team)
        with self._team_lock:
            self._team_cache[team.id] = members
        return members
