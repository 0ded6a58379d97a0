"""快照存储

职责:
- 定位当前已安装的转储
- 判断快照是否新鲜
- 原子安装新一代快照

目录布局:
    <cache_dir>/
      current -> generations/gen-20240101T000000-ab12cd   (符号链接)
      generations/
        gen-20240101T000000-ab12cd/
          metadata.yml        获取时间 + 表清单，最后写入
          crates.csv
          crate_owners.csv
          users.csv
          teams.csv
          team_members.csv    (可选)

每一代目录写完后不再修改。切换代际只替换 current 符号链接（rename 原子），
读者解析一次链接后所有表都来自同一代，不会读到新旧混合的快照。
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from supplychain.core.exceptions import StoreError
from supplychain.core.registry.models import ALL_TABLES, REQUIRED_TABLES, Snapshot
from supplychain.utils.yaml_io import load_yaml, save_yaml

if TYPE_CHECKING:
    from supplychain.core.registry.fetcher import RawFiles

logger = logging.getLogger(__name__)

CURRENT_LINK = "current"
GENERATIONS_DIR = "generations"
METADATA_FILE = "metadata.yml"


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SnapshotStore:
    """快照存储 - 独占 cache_dir 下的快照文件"""

    def __init__(self, cache_dir: str | Path) -> None:
        self.cache_dir = Path(cache_dir)

    @property
    def current_link(self) -> Path:
        return self.cache_dir / CURRENT_LINK

    @property
    def generations_dir(self) -> Path:
        return self.cache_dir / GENERATIONS_DIR

    def _resolve_current(self) -> Path | None:
        link = self.current_link
        if not link.is_symlink():
            return None
        return Path(os.path.realpath(link))

    def current_snapshot(self) -> Snapshot | None:
        """返回当前完整快照；首次运行或快照不完整时返回 None"""
        root = self._resolve_current()
        if root is None:
            logger.debug("无可用快照: %s", self.current_link)
            return None

        try:
            meta = load_yaml(root / METADATA_FILE)
        except (yaml.YAMLError, ValueError, OSError) as e:
            logger.warning("快照元数据无法读取: %s (%s)", root, e)
            return None
        if not meta:
            logger.warning("快照缺少元数据: %s", root)
            return None

        acquired_raw = meta.get("acquired_at")
        try:
            acquired_at = datetime.fromisoformat(str(acquired_raw))
        except ValueError:
            logger.warning("快照元数据时间戳无效: %s", acquired_raw)
            return None
        if acquired_at.tzinfo is None:
            acquired_at = acquired_at.replace(tzinfo=timezone.utc)

        tables: dict[str, Path] = {}
        for name in meta.get("tables") or []:
            path = root / f"{name}.csv"
            if path.is_file():
                tables[name] = path

        missing = [t for t in REQUIRED_TABLES if t not in tables]
        if missing:
            logger.warning("快照缺少表 %s，视为不存在", ", ".join(missing))
            return None

        return Snapshot(root=root, acquired_at=acquired_at, tables=tables)

    @staticmethod
    def is_fresh(
        snapshot: Snapshot, max_age: timedelta, now: datetime | None = None,
    ) -> bool:
        """快照年龄严格小于 max_age 时为新鲜（恰好等于 max_age 视为过期）"""
        now = now or utcnow()
        return now - snapshot.acquired_at < max_age

    def install(self, raw: RawFiles, acquired_at: datetime | None = None) -> Snapshot:
        """原子地把 raw 中的表安装为当前快照

        新一代在 generations/ 下完整写好后，才通过 rename 一个临时符号链接
        切换 current。任何一步失败都会清理新目录并抛出 StoreError，旧快照不受影响。
        """
        missing = [t for t in REQUIRED_TABLES if t not in raw.tables]
        if missing:
            raise StoreError(f"待安装的转储缺少表: {', '.join(missing)}")

        acquired_at = acquired_at or utcnow()
        previous = self._resolve_current()
        try:
            self.generations_dir.mkdir(parents=True, exist_ok=True)
            gen_dir = Path(tempfile.mkdtemp(
                prefix=acquired_at.strftime("gen-%Y%m%dT%H%M%S-"),
                dir=self.generations_dir,
            ))
        except OSError as e:
            raise StoreError(f"无法创建快照目录 {self.generations_dir}: {e}") from e

        try:
            installed: list[str] = []
            for name in ALL_TABLES:
                src = raw.tables.get(name)
                if src is None:
                    continue
                shutil.move(str(src), str(gen_dir / f"{name}.csv"))
                installed.append(name)

            save_yaml(gen_dir / METADATA_FILE, {
                "acquired_at": acquired_at.isoformat(),
                "tables": installed,
            })
            self._point_current_to(gen_dir)
        except OSError as e:
            shutil.rmtree(gen_dir, ignore_errors=True)
            raise StoreError(f"安装快照失败: {e}") from e

        logger.info("快照已安装: %s (获取于 %s)", gen_dir.name, acquired_at.isoformat())
        self._prune(keep={gen_dir.name, previous.name if previous else ""})

        snapshot = self.current_snapshot()
        if snapshot is None:
            raise StoreError(f"安装后无法读取快照: {gen_dir}")
        return snapshot

    def _point_current_to(self, gen_dir: Path) -> None:
        target = os.path.join(GENERATIONS_DIR, gen_dir.name)
        tmp_link = self.cache_dir / f".{CURRENT_LINK}-{gen_dir.name}"
        if tmp_link.is_symlink():
            tmp_link.unlink()
        os.symlink(target, tmp_link)
        try:
            os.replace(tmp_link, self.current_link)
        except OSError:
            tmp_link.unlink(missing_ok=True)
            raise

    def _prune(self, keep: set[str]) -> None:
        """删除比上一代更旧的代际目录

        上一代保留一轮：可能有其他进程刚解析完旧链接、仍在读取它。
        比 keep 中最新一代还新的目录属于并发安装中的进程，不动。
        """
        oldest_kept = min(k for k in keep if k)
        for child in self.generations_dir.iterdir():
            if child.name < oldest_kept:
                logger.debug("清理旧快照: %s", child.name)
                shutil.rmtree(child, ignore_errors=True)
