"""crates.io 注册表数据缓存

拆分说明:
- models.py:     数据模型 (Package / Account / PublisherSet / Snapshot)
- store.py:      快照存储，原子安装
- fetcher.py:    数据库转储下载 + 解包
- index.py:      内存索引
- api_client.py: 在线 API 客户端，限速 + 重试
- resolver.py:   索引优先、API 回退的发布者解析
- cache.py:      刷新策略 + 索引懒加载
"""

from supplychain.core.registry.api_client import RateLimiter, RegistryApiClient, RetryPolicy
from supplychain.core.registry.cache import SnapshotCache
from supplychain.core.registry.fetcher import RawFiles, SnapshotFetcher
from supplychain.core.registry.index import RegistryIndex
from supplychain.core.registry.models import (
    Account,
    Package,
    PublisherSet,
    Snapshot,
    TeamAccount,
    UserAccount,
)
from supplychain.core.registry.resolver import PublisherResolver, Resolution, ResolutionReport
from supplychain.core.registry.store import SnapshotStore

__all__ = [
    "Account",
    "Package",
    "PublisherResolver",
    "PublisherSet",
    "RateLimiter",
    "RawFiles",
    "RegistryApiClient",
    "RegistryIndex",
    "Resolution",
    "ResolutionReport",
    "RetryPolicy",
    "Snapshot",
    "SnapshotCache",
    "SnapshotFetcher",
    "SnapshotStore",
    "TeamAccount",
    "UserAccount",
]
