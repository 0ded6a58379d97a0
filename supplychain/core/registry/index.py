"""注册表内存索引

从快照的 CSV 表构建 "包名 -> 发布者集合" 映射，进程内只构建一次、构建后只读。

表与列（与 crates.io 数据库转储一致，多余列忽略）:
  - crates(id, name)
  - crate_owners(crate_id, owner_id, owner_kind)   owner_kind: 0=用户, 1=团队
  - users(id, gh_login, name)
  - teams(id, login)                               login 形如 github:<org>:<team>
  - team_members(team_id, user_id)                 可选

团队展开分两级：转储里有成员数据的团队在构建时展开为成员用户；
没有成员数据的团队保留为未展开的 TeamAccount，由 Resolver 按需调用 API 展开。
"""

from __future__ import annotations

import csv
import logging
from collections import defaultdict
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from supplychain.core.exceptions import ParseError
from supplychain.core.registry.models import (
    Account,
    PublisherSet,
    Snapshot,
    TeamAccount,
    UserAccount,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

OWNER_KIND_USER = 0
OWNER_KIND_TEAM = 1

# crates.csv 含 readme 等大字段，默认 128KB 字段上限不够
_FIELD_SIZE_LIMIT = 64 * 1024 * 1024

REQUIRED_COLUMNS: dict[str, tuple[str, ...]] = {
    "crates": ("id", "name"),
    "crate_owners": ("crate_id", "owner_id", "owner_kind"),
    "users": ("id", "gh_login", "name"),
    "teams": ("id", "login"),
    "team_members": ("team_id", "user_id"),
}


def _iter_rows(table: str, path: Path) -> Iterator[tuple[int, dict[str, str]]]:
    """逐行读取表，校验必需列，产出 (行号, 行)"""
    required = REQUIRED_COLUMNS[table]
    try:
        with open(path, newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)
            header = reader.fieldnames or []
            missing = [c for c in required if c not in header]
            if missing:
                raise ParseError(f"缺少必需列 {', '.join(missing)}", table=table, line=1)
            for row in reader:
                yield reader.line_num, row
    except csv.Error as e:
        raise ParseError(f"CSV 格式错误: {e}", table=table) from e
    except UnicodeDecodeError as e:
        raise ParseError(f"不是合法的 UTF-8: {e}", table=table) from e


def _field(
    table: str, line: int, row: dict[str, str], column: str,
    convert: Callable[[str], T],
) -> T:
    value = row.get(column)
    if value is None:
        raise ParseError(f"列 {column} 缺失（行字段数不足）", table=table, line=line)
    try:
        return convert(value)
    except ValueError as e:
        raise ParseError(f"列 {column} 的值 {value!r} 无法解析: {e}", table=table, line=line) from e


class RegistryIndex:
    """只读索引 - 通过 build() 从快照构建"""

    def __init__(
        self,
        publishers: dict[str, PublisherSet],
        team_members: dict[int, tuple[int, ...]],
    ) -> None:
        self._publishers = publishers
        self._team_members = team_members

    def __len__(self) -> int:
        return len(self._publishers)

    def __contains__(self, name: object) -> bool:
        return name in self._publishers

    def publishers_of(self, name: str) -> PublisherSet | None:
        """包不在快照中时返回 None，调用方需回退到 API"""
        return self._publishers.get(name)

    def team_members(self, team_id: int) -> tuple[int, ...] | None:
        """转储中的团队成员 id 列表；无成员数据时返回 None"""
        return self._team_members.get(team_id)

    @classmethod
    def build(cls, snapshot: Snapshot) -> RegistryIndex:
        """单遍扫描各表构建索引

        Raises:
            ParseError: 缺少必需列，或某行无法解码
        """
        if csv.field_size_limit() < _FIELD_SIZE_LIMIT:
            csv.field_size_limit(_FIELD_SIZE_LIMIT)

        users = cls._load_users(snapshot.tables["users"])
        members_path = snapshot.table("team_members")
        team_members = cls._load_team_members(members_path) if members_path else {}
        teams = cls._load_teams(snapshot.tables["teams"], team_members, users)
        crates = cls._load_crates(snapshot.tables["crates"])
        publishers = cls._load_owners(snapshot.tables["crate_owners"], crates, users, teams)

        logger.info(
            "索引已构建: %d 个包, %d 个用户, %d 个团队 (%d 个含成员数据)",
            len(publishers), len(users), len(teams), len(team_members),
        )
        return cls(publishers, team_members)

    @staticmethod
    def _load_users(path: Path) -> dict[int, UserAccount]:
        users: dict[int, UserAccount] = {}
        for line, row in _iter_rows("users", path):
            uid = _field("users", line, row, "id", int)
            users[uid] = UserAccount(
                id=uid,
                login=_field("users", line, row, "gh_login", str),
                name=row.get("name") or "",
            )
        return users

    @staticmethod
    def _load_team_members(path: Path) -> dict[int, tuple[int, ...]]:
        grouped: dict[int, list[int]] = defaultdict(list)
        for line, row in _iter_rows("team_members", path):
            team_id = _field("team_members", line, row, "team_id", int)
            user_id = _field("team_members", line, row, "user_id", int)
            if user_id not in grouped[team_id]:
                grouped[team_id].append(user_id)
        return {tid: tuple(uids) for tid, uids in grouped.items()}

    @staticmethod
    def _load_teams(
        path: Path,
        team_members: dict[int, tuple[int, ...]],
        users: dict[int, UserAccount],
    ) -> dict[int, TeamAccount]:
        teams: dict[int, TeamAccount] = {}
        for line, row in _iter_rows("teams", path):
            tid = _field("teams", line, row, "id", int)
            login = _field("teams", line, row, "login", str)
            members: tuple[UserAccount, ...] | None = None
            if tid in team_members:
                members = tuple(users[u] for u in team_members[tid] if u in users)
            try:
                teams[tid] = TeamAccount.from_login(tid, login, members)
            except ValueError as e:
                raise ParseError(str(e), table="teams", line=line) from e
        return teams

    @staticmethod
    def _load_crates(path: Path) -> dict[int, str]:
        crates: dict[int, str] = {}
        for line, row in _iter_rows("crates", path):
            crates[_field("crates", line, row, "id", int)] = _field(
                "crates", line, row, "name", str,
            )
        return crates

    @staticmethod
    def _load_owners(
        path: Path,
        crates: dict[int, str],
        users: dict[int, UserAccount],
        teams: dict[int, TeamAccount],
    ) -> dict[str, PublisherSet]:
        owners: dict[str, list[Account]] = defaultdict(list)
        for line, row in _iter_rows("crate_owners", path):
            crate_id = _field("crate_owners", line, row, "crate_id", int)
            owner_id = _field("crate_owners", line, row, "owner_id", int)
            kind = _field("crate_owners", line, row, "owner_kind", int)

            name = crates.get(crate_id)
            if name is None:
                logger.debug("crate_owners:%d 引用了未知包 %d，跳过", line, crate_id)
                continue

            if kind == OWNER_KIND_USER:
                user = users.get(owner_id)
                if user is None:
                    logger.debug("crate_owners:%d 引用了未知用户 %d，跳过", line, owner_id)
                    continue
                owners[name].append(user)
            elif kind == OWNER_KIND_TEAM:
                team = teams.get(owner_id)
                if team is None:
                    logger.debug("crate_owners:%d 引用了未知团队 %d，跳过", line, owner_id)
                    continue
                if team.members:
                    owners[name].extend(team.members)
                else:
                    owners[name].append(team)
            else:
                raise ParseError(f"未知的 owner_kind {kind}", table="crate_owners", line=line)

        publishers = {name: PublisherSet(accounts) for name, accounts in owners.items()}
        # 没有任何 owner 行的包也要收录：快照确认过它存在，只是发布者为空
        for name in crates.values():
            publishers.setdefault(name, PublisherSet())
        return publishers
