"""数据库转储拉取器

职责:
- 下载 crates.io 每日数据库转储 (db-dump.tar.gz)
- 校验传输完整性（Content-Length）
- 只解出索引需要的表，其余丢弃以控制磁盘占用

拉取器只写临时目录，从不触碰当前快照；安装由 SnapshotStore.install 完成。
失败不做自动重试，重试策略属于调用方（SnapshotCache.refresh）。
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
import time
import zlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import httpx

from supplychain.core.exceptions import FetchError
from supplychain.core.registry.models import ALL_TABLES, REQUIRED_TABLES
from supplychain.utils.net import make_client, validate_url_scheme

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "db-dump.tar.gz"
_CHUNK_SIZE = 1024 * 1024
_STAGING_PREFIX = ".fetch-"
# 超过此时长的暂存目录视为被中断的拉取遗留（进程被杀等）
STALE_STAGING_AGE = 24 * 3600


@dataclass
class RawFiles:
    """拉取结果：暂存目录中解出的表文件"""

    staging_dir: Path
    tables: dict[str, Path] = field(default_factory=dict)

    def cleanup(self) -> None:
        shutil.rmtree(self.staging_dir, ignore_errors=True)


def _table_name(member: tarfile.TarInfo) -> str | None:
    """`<日期>/data/<table>.csv` -> table，非目标成员返回 None"""
    if not member.isfile():
        return None
    path = PurePosixPath(member.name)
    if path.suffix != ".csv" or len(path.parts) < 2 or path.parts[-2] != "data":
        return None
    return path.stem if path.stem in ALL_TABLES else None


class SnapshotFetcher:
    """转储拉取器 - 下载 + 解包到暂存目录"""

    def __init__(
        self,
        url: str,
        work_dir: str | Path,
        *,
        user_agent: str = "supplychain",
        timeout: float = 600.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        validate_url_scheme(url, context="dump_url")
        self.url = url
        self.work_dir = Path(work_dir)
        self.user_agent = user_agent
        self.timeout = timeout
        self._transport = transport

    def fetch(self) -> RawFiles:
        """下载并解包转储

        暂存目录建在 work_dir 下，保证后续安装时 move 是同文件系统的 rename。

        Raises:
            FetchError: 网络 / 状态码 / 截断 / 损坏 / 缺表
        """
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self._sweep_stale_staging()
        raw = RawFiles(staging_dir=Path(tempfile.mkdtemp(prefix=_STAGING_PREFIX, dir=self.work_dir)))
        archive = raw.staging_dir / ARCHIVE_NAME
        try:
            self._download(archive)
            raw.tables = self._unpack(archive, raw.staging_dir)
        except BaseException:
            raw.cleanup()
            raise
        finally:
            archive.unlink(missing_ok=True)
        return raw

    def _sweep_stale_staging(self) -> None:
        """清理被中断的拉取遗留的暂存目录；较新的目录可能属于并发拉取，保留"""
        cutoff = time.time() - STALE_STAGING_AGE
        for path in self.work_dir.glob(f"{_STAGING_PREFIX}*"):
            try:
                if not path.is_dir() or path.stat().st_mtime >= cutoff:
                    continue
            except OSError:
                continue
            logger.info("清理遗留暂存目录: %s", path)
            shutil.rmtree(path, ignore_errors=True)

    def _download(self, dest: Path) -> None:
        logger.info("下载数据库转储: %s", self.url)
        received = 0
        try:
            with make_client(self.user_agent, self.timeout, self._transport) as client:
                with client.stream("GET", self.url) as response:
                    if response.status_code >= 400:
                        raise FetchError(
                            "http_status",
                            f"下载失败: {self.url} 返回 HTTP {response.status_code}",
                        )
                    expected = response.headers.get("content-length")
                    with open(dest, "wb") as f:
                        for chunk in response.iter_raw(_CHUNK_SIZE):
                            f.write(chunk)
                            received += len(chunk)
        except httpx.RemoteProtocolError as e:
            raise FetchError("truncated", f"连接中断，转储不完整: {e}") from e
        except httpx.RequestError as e:
            raise FetchError("network", f"网络错误: {self.url} - {type(e).__name__}: {e}") from e
        except OSError as e:
            raise FetchError("unpack", f"写入暂存文件失败: {dest} - {e}") from e

        if expected is not None and expected.isdigit() and received != int(expected):
            raise FetchError(
                "truncated",
                f"转储不完整: 期望 {expected} 字节, 实际收到 {received} 字节",
            )
        logger.info("下载完成: %.1f MB", received / (1024 * 1024))

    def _unpack(self, archive: Path, staging_dir: Path) -> dict[str, Path]:
        """流式遍历 tar 成员，只解出目标表"""
        tables: dict[str, Path] = {}
        try:
            with tarfile.open(archive, mode="r|gz") as tar:
                for member in tar:
                    name = _table_name(member)
                    if name is None or name in tables:
                        continue
                    src = tar.extractfile(member)
                    if src is None:
                        continue
                    dest = staging_dir / f"{name}.csv"
                    with src, open(dest, "wb") as dst:
                        shutil.copyfileobj(src, dst, _CHUNK_SIZE)
                    tables[name] = dest
                    logger.debug("  已解出: %s (%d 字节)", name, member.size)
        except (tarfile.TarError, EOFError, zlib.error) as e:
            raise FetchError("corrupt", f"转储压缩包损坏: {e}") from e
        except OSError as e:
            # gzip.BadGzipFile 继承 OSError
            raise FetchError("corrupt", f"无法解压转储: {e}") from e

        missing = [t for t in REQUIRED_TABLES if t not in tables]
        if missing:
            raise FetchError("unpack", f"转储中缺少表: {', '.join(missing)}")
        logger.info("已解出 %d 张表: %s", len(tables), ", ".join(sorted(tables)))
        return tables
