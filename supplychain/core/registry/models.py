"""注册表数据模型

数据类:
- Package:      调用方给出的包标识（名称 + 可选版本）
- UserAccount:  个人发布者
- TeamAccount:  团队发布者（成员可能尚未展开）
- PublisherSet: 某个包的发布者集合，按 (kind, id) 去重
- Snapshot:     一代已安装的数据库转储
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Union

# 索引构建需要的表；team_members 为可选表，crates.io 官方转储不含此表
REQUIRED_TABLES = ("crates", "crate_owners", "users", "teams")
OPTIONAL_TABLES = ("team_members",)
ALL_TABLES = REQUIRED_TABLES + OPTIONAL_TABLES


@dataclass(frozen=True)
class Package:
    """依赖图中的一个包"""

    name: str
    version: str | None = None

    def __str__(self) -> str:
        return f"{self.name} {self.version}" if self.version else self.name


@dataclass(frozen=True)
class UserAccount:
    """个人账号"""

    id: int
    login: str
    name: str = ""
    kind: str = field(default="user", init=False)

    @property
    def display_name(self) -> str:
        return self.name or self.login


@dataclass(frozen=True)
class TeamAccount:
    """团队账号

    members 为 None 表示成员列表未知（需要通过 API 展开），
    空元组表示已确认团队没有成员。
    """

    id: int
    org: str
    name: str
    members: tuple[UserAccount, ...] | None = None
    kind: str = field(default="team", init=False)

    @property
    def login(self) -> str:
        return f"github:{self.org}:{self.name}"

    @property
    def display_name(self) -> str:
        return f"{self.org}/{self.name}"

    @property
    def expanded(self) -> bool:
        return self.members is not None

    @classmethod
    def from_login(
        cls, team_id: int, login: str,
        members: tuple[UserAccount, ...] | None = None,
    ) -> TeamAccount:
        """从 `github:<org>:<team>` 形式的 login 构造"""
        parts = login.split(":")
        if len(parts) == 3:
            _, org, name = parts
        elif len(parts) == 2:
            org, name = parts
        else:
            raise ValueError(f"无法解析团队 login: {login!r}")
        return cls(id=team_id, org=org, name=name, members=members)


Account = Union[UserAccount, TeamAccount]


def account_key(account: Account) -> tuple[str, int]:
    """用户和团队的 id 空间各自独立，去重键需带上 kind"""
    return (account.kind, account.id)


class PublisherSet:
    """一个包的发布者集合

    插入顺序无意义，按 account_key 去重；迭代时按 (kind, 显示名) 排序，
    保证输出稳定。
    """

    __slots__ = ("_accounts",)

    def __init__(self, accounts: Iterable[Account] = ()) -> None:
        self._accounts: dict[tuple[str, int], Account] = {}
        for account in accounts:
            self._accounts.setdefault(account_key(account), account)

    def __iter__(self) -> Iterator[Account]:
        return iter(sorted(
            self._accounts.values(),
            key=lambda a: (a.kind != "user", a.display_name.lower(), a.id),
        ))

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, account: object) -> bool:
        if not isinstance(account, (UserAccount, TeamAccount)):
            return False
        return account_key(account) in self._accounts

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PublisherSet):
            return NotImplemented
        return set(self._accounts) == set(other._accounts)

    def __repr__(self) -> str:
        names = ", ".join(a.display_name for a in self)
        return f"PublisherSet({{{names}}})"

    @property
    def teams(self) -> list[TeamAccount]:
        return [a for a in self if isinstance(a, TeamAccount)]

    def unexpanded_teams(self) -> list[TeamAccount]:
        return [t for t in self.teams if not t.expanded]

    def expand_team(
        self, team: TeamAccount, members: Iterable[UserAccount],
    ) -> PublisherSet:
        """用成员用户替换团队条目，返回新集合

        成员为空时保留一个已展开（members=()）的团队条目，避免团队从结果中消失。
        """
        members = tuple(members)
        kept = [a for k, a in self._accounts.items() if k != account_key(team)]
        if not members:
            kept.append(TeamAccount(id=team.id, org=team.org, name=team.name, members=()))
        return PublisherSet([*kept, *members])


@dataclass(frozen=True)
class Snapshot:
    """一代已安装的转储：获取时间 + 各表文件路径"""

    root: Path
    acquired_at: datetime
    tables: dict[str, Path]

    def table(self, name: str) -> Path | None:
        return self.tables.get(name)
