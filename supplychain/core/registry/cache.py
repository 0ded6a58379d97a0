"""快照缓存协调

把 SnapshotStore / SnapshotFetcher / RegistryIndex 串起来，负责 update 流程的策略:
  - 快照新鲜 → 直接使用
  - 过期或不存在 → 拉取并安装，拉取失败按 refresh_attempts 重试
  - 刷新失败但有旧快照 → 记录警告，继续使用旧快照
  - 刷新失败且没有任何快照 → 抛出错误

索引在首次需要时构建一次，之后在本实例生命周期内复用。
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Callable

from supplychain.core.exceptions import FetchError, StoreError
from supplychain.core.registry.fetcher import SnapshotFetcher
from supplychain.core.registry.index import RegistryIndex
from supplychain.core.registry.models import Snapshot
from supplychain.core.registry.store import SnapshotStore

logger = logging.getLogger(__name__)


class SnapshotCache:
    """快照获取策略 + 索引懒加载"""

    def __init__(
        self,
        store: SnapshotStore,
        fetcher: SnapshotFetcher,
        max_age: timedelta,
        *,
        refresh_attempts: int = 2,
        retry_delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.max_age = max_age
        self.refresh_attempts = max(1, refresh_attempts)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._index: RegistryIndex | None = None
        self._index_snapshot: Snapshot | None = None

    def refresh(self) -> Snapshot:
        """无条件拉取并安装新快照

        Raises:
            FetchError: 重试耗尽仍拉取失败
            StoreError: 安装失败（不重试）
        """
        for attempt in range(1, self.refresh_attempts + 1):
            try:
                raw = self.fetcher.fetch()
            except FetchError as e:
                if attempt >= self.refresh_attempts:
                    raise
                logger.warning(
                    "拉取转储失败 (第 %d/%d 次, %s): %s，%.0f 秒后重试",
                    attempt, self.refresh_attempts, e.kind, e, self.retry_delay,
                )
                self._sleep(self.retry_delay)
                continue
            try:
                snapshot = self.store.install(raw)
            finally:
                raw.cleanup()
            self._index = None
            return snapshot
        raise AssertionError("unreachable")

    def update(self, force: bool = False) -> Snapshot:
        """update 命令：快照仍新鲜且未强制时跳过下载"""
        current = self.store.current_snapshot()
        if current is not None and not force and self.store.is_fresh(current, self.max_age):
            logger.info("快照仍新鲜 (获取于 %s)，跳过下载", current.acquired_at.isoformat())
            return current
        return self.refresh()

    def ensure(self, offline: bool = False) -> Snapshot | None:
        """返回可用快照，必要时刷新

        offline=True 时从不下载，直接返回现有快照（可能过期或为 None）。

        Raises:
            FetchError / StoreError: 刷新失败且本地没有任何快照
        """
        current = self.store.current_snapshot()
        if current is not None and self.store.is_fresh(current, self.max_age):
            return current
        if offline:
            if current is not None:
                logger.warning("快照已过期 (获取于 %s)，离线模式继续使用", current.acquired_at.isoformat())
            return current

        logger.info("快照%s，开始刷新", "已过期" if current else "不存在")
        try:
            return self.refresh()
        except (FetchError, StoreError) as e:
            if current is None:
                raise
            logger.warning("刷新快照失败，继续使用旧快照 (获取于 %s): %s", current.acquired_at.isoformat(), e)
            return current

    def load_index(self, snapshot: Snapshot) -> RegistryIndex:
        """按快照构建索引，同一快照只构建一次

        Raises:
            ParseError: 快照表格式错误
        """
        if self._index is None or self._index_snapshot != snapshot:
            self._index = RegistryIndex.build(snapshot)
            self._index_snapshot = snapshot
        return self._index
