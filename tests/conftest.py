"""共享 fixture — 合成 crates.io 转储

默认转储内容:

  用户: alice(1)  bob(2)  carol(3)
  团队: github:rust-lang:core(10)  成员 bob, carol（team_members 表）
        github:acme:core-team(11)  无成员数据
  包:   serde   -> alice
        tokio   -> alice + 团队 10（构建时展开为 bob, carol）
        alpha   -> 团队 11（未展开）
        lonely  -> 无 owner
"""

from __future__ import annotations

import copy
import csv
import io
import tarfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable
from urllib.parse import unquote

import httpx
import pytest

from supplychain.core.config import Config
from supplychain.core.registry.fetcher import RawFiles
from supplychain.core.registry.models import Snapshot
from supplychain.core.registry.store import SnapshotStore

Tables = dict[str, list[dict[str, object]]]

DEFAULT_TABLES: Tables = {
    "users": [
        {"gh_avatar": "", "gh_id": "501", "gh_login": "alice", "id": 1, "name": "Alice A"},
        {"gh_avatar": "", "gh_id": "502", "gh_login": "bob", "id": 2, "name": ""},
        {"gh_avatar": "", "gh_id": "503", "gh_login": "carol", "id": 3, "name": "Carol"},
    ],
    "teams": [
        {"avatar": "", "github_id": "9001", "id": 10, "login": "github:rust-lang:core", "name": "Core", "org_id": "77"},
        {"avatar": "", "github_id": "9002", "id": 11, "login": "github:acme:core-team", "name": "core-team", "org_id": "78"},
    ],
    "team_members": [
        {"team_id": 10, "user_id": 2},
        {"team_id": 10, "user_id": 3},
    ],
    "crates": [
        {"created_at": "2020-01-01", "description": "serialization", "id": 100, "name": "serde"},
        {"created_at": "2020-01-01", "description": "async runtime", "id": 101, "name": "tokio"},
        {"created_at": "2020-01-01", "description": "", "id": 102, "name": "alpha"},
        {"created_at": "2020-01-01", "description": "", "id": 103, "name": "lonely"},
    ],
    "crate_owners": [
        {"crate_id": 100, "created_at": "2020-01-01", "created_by": "", "owner_id": 1, "owner_kind": 0},
        {"crate_id": 101, "created_at": "2020-01-01", "created_by": "", "owner_id": 1, "owner_kind": 0},
        {"crate_id": 101, "created_at": "2020-01-01", "created_by": "", "owner_id": 10, "owner_kind": 1},
        {"crate_id": 102, "created_at": "2020-01-01", "created_by": "", "owner_id": 11, "owner_kind": 1},
    ],
}


def _csv_bytes(rows: list[dict[str, object]], fieldnames: list[str] | None = None) -> bytes:
    if fieldnames is None:
        fieldnames = []
        for row in rows:
            fieldnames += [k for k in row if k not in fieldnames]
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=fieldnames, lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue().encode("utf-8")


def write_tables(directory: Path, tables: Tables) -> dict[str, Path]:
    directory.mkdir(parents=True, exist_ok=True)
    paths: dict[str, Path] = {}
    for name, rows in tables.items():
        path = directory / f"{name}.csv"
        path.write_bytes(_csv_bytes(rows))
        paths[name] = path
    return paths


def build_archive(tables: Tables, prefix: str = "2024-01-01-020014") -> bytes:
    """按 crates.io 转储布局打包 tar.gz，附带索引用不到的表和文件"""
    extras: dict[str, bytes] = {
        f"{prefix}/README.md": b"crates.io database dump\n",
        f"{prefix}/data/versions.csv": _csv_bytes([{"id": 1, "crate_id": 100, "num": "1.0.0"}]),
    }
    members = {f"{prefix}/data/{name}.csv": _csv_bytes(rows) for name, rows in tables.items()}
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in {**extras, **members}.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class FakeRegistry:
    """同时模拟转储下载站与 crates.io API 的 httpx handler

    owners:  包名 -> API users 列表（kind=user/team 的条目）
    members: 团队 login -> 成员 users 列表
    未登记的包 / 团队返回 404；dump_status 非 200 时下载失败。
    """

    def __init__(self, archive: bytes) -> None:
        self.archive = archive
        self.dump_status = 200
        self.owners: dict[str, list[dict]] = {}
        self.members: dict[str, list[dict]] = {}
        self.dump_requests = 0
        self.api_requests: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "static.crates.io":
            self.dump_requests += 1
            if self.dump_status != 200:
                return httpx.Response(self.dump_status)
            return httpx.Response(
                200,
                headers={"Content-Length": str(len(self.archive))},
                content=iter([self.archive]),
            )

        path = unquote(request.url.path)
        self.api_requests.append(path)
        parts = path.split("/")
        if path.endswith("/owners") and parts[-2] in self.owners:
            return httpx.Response(200, json={"users": self.owners[parts[-2]]})
        if path.endswith("/members") and parts[-2] in self.members:
            return httpx.Response(200, json={"users": self.members[parts[-2]]})
        return httpx.Response(404, json={"errors": [{"detail": "Not Found"}]})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def fake_registry(tables: Tables) -> FakeRegistry:
    return FakeRegistry(build_archive(tables))


@pytest.fixture
def app_config(tmp_path: Path) -> Config:
    """缓存指向 tmp_path、关闭退避与限速的配置"""
    return Config(
        cache_dir=str(tmp_path / "cache"),
        base_delay=0.0,
        min_interval=0.0,
        refresh_attempts=1,
        refresh_delay=0.0,
    )


@pytest.fixture
def tables() -> Tables:
    """可在测试中随意修改的默认表副本"""
    return copy.deepcopy(DEFAULT_TABLES)


@pytest.fixture
def make_raw(tmp_path: Path) -> Callable[..., RawFiles]:
    counter = iter(range(1000))

    def _make(tables: Tables) -> RawFiles:
        staging = tmp_path / f"raw-{next(counter)}"
        return RawFiles(staging_dir=staging, tables=write_tables(staging, tables))

    return _make


@pytest.fixture
def make_snapshot(tmp_path: Path, make_raw: Callable[..., RawFiles]) -> Callable[..., Snapshot]:
    """把表安装进 tmp_path/cache 的快照存储，返回 Snapshot"""

    def _make(tables: Tables, acquired_at: datetime | None = None) -> Snapshot:
        store = SnapshotStore(tmp_path / "cache")
        return store.install(
            make_raw(tables),
            acquired_at=acquired_at or datetime.now(tz=timezone.utc),
        )

    return _make


@pytest.fixture
def make_archive() -> Callable[..., bytes]:
    return build_archive
