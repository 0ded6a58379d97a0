"""发布者审计服务 — CLI 与核心之间的编排层

职责:
- 按 Config 组装 SnapshotStore / SnapshotFetcher / SnapshotCache / RegistryApiClient
- update: 刷新本地快照
- resolve: 确保快照可用 → 构建索引 → 解析发布者
- audit: cargo metadata 提取依赖图后 resolve

用法:
    svc = PublisherService(get_config())
    report = svc.audit(["--filter-platform", "x86_64-unknown-linux-gnu"])
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Iterable

import httpx

from supplychain.core.config import Config
from supplychain.core.exceptions import FetchError, StoreError
from supplychain.core.metadata import sourced_dependencies
from supplychain.core.registry import (
    Package,
    PublisherResolver,
    RegistryApiClient,
    ResolutionReport,
    RetryPolicy,
    Snapshot,
    SnapshotCache,
    SnapshotFetcher,
    SnapshotStore,
)
from supplychain.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class PublisherService:
    """发布者审计服务

    transport / executor 仅用于测试注入（httpx.MockTransport / 假的命令执行器）。
    """

    def __init__(
        self,
        config: Config,
        *,
        max_age: timedelta | None = None,
        transport: httpx.BaseTransport | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._executor = executor
        self.store = SnapshotStore(Path(config.cache_dir).expanduser())
        self.fetcher = SnapshotFetcher(
            config.dump_url,
            self.store.cache_dir,
            user_agent=config.user_agent,
            timeout=config.download_timeout,
            transport=transport,
        )
        self.cache = SnapshotCache(
            self.store,
            self.fetcher,
            max_age if max_age is not None else config.max_age,
            refresh_attempts=config.refresh_attempts,
            retry_delay=config.refresh_delay,
        )
        self.policy = RetryPolicy(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            multiplier=config.backoff_multiplier,
            min_interval=config.min_interval,
        )

    def update(self, force: bool = False) -> Snapshot:
        return self.cache.update(force=force)

    def resolve(self, packages: Iterable[Package], offline: bool = False) -> ResolutionReport:
        """解析发布者

        没有本地快照且刷新失败时不中断，所有包退回在线查询。

        Raises:
            ParseError: 快照表损坏
        """
        try:
            snapshot = self.cache.ensure(offline=offline)
        except (FetchError, StoreError) as e:
            logger.warning("无法获取快照: %s", e)
            snapshot = None
        index = self.cache.load_index(snapshot) if snapshot is not None else None
        if index is None:
            logger.warning("没有可用快照，所有包都需要在线查询")

        if offline:
            return PublisherResolver(index, None).resolve(packages)

        with RegistryApiClient(
            self.config.api_url,
            user_agent=self.config.user_agent,
            timeout=self.config.request_timeout,
            policy=self.policy,
            transport=self._transport,
        ) as api:
            resolver = PublisherResolver(index, api, max_workers=self.config.max_workers)
            return resolver.resolve(packages)

    def audit(
        self, metadata_args: list[str] | None = None, offline: bool = False,
    ) -> ResolutionReport:
        packages = sourced_dependencies(metadata_args, executor=self._executor)
        return self.resolve(packages, offline=offline)
