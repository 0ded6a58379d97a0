"""crates.io 在线 API 客户端

职责:
- 查询单个包的 owner 列表 (GET /crates/<name>/owners)
- 查询团队成员 (GET /teams/<login>/members)
- 限速：所有线程共享同一个 RateLimiter，总请求速率受 min_interval 约束
- 重试：5xx / 超时 / 连接错误指数退避重试；404 与其他 4xx 不重试
- 任何 httpx 请求异常都转换为 ApiError，由 Resolver 记为单包注解

查询命令执行期间，这是唯一允许访问网络的组件。
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import quote

import httpx

from supplychain.core.exceptions import ApiError
from supplychain.core.registry.models import PublisherSet, TeamAccount, UserAccount
from supplychain.utils.net import make_client, validate_url_scheme

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """重试与限速策略

    第 n 次失败后等待 base_delay * multiplier ** (n - 1) 秒；
    任意两次请求的发起间隔不小于 min_interval 秒。
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    min_interval: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts 至少为 1: {self.max_attempts}")

    def backoff(self, attempt: int) -> float:
        return self.base_delay * self.multiplier ** (attempt - 1)

    @classmethod
    def no_delay(cls, max_attempts: int = 3) -> RetryPolicy:
        return cls(max_attempts=max_attempts, base_delay=0.0, min_interval=0.0)


class RateLimiter:
    """跨线程的最小请求间隔

    持锁等待，保证并发 worker 的请求被串行化到 min_interval 的节奏上。
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_allowed = 0.0

    def wait(self) -> None:
        with self._lock:
            delay = self._next_allowed - self._clock()
            if delay > 0:
                self._sleep(delay)
            self._next_allowed = self._clock() + self.min_interval


def _parse_user(entry: dict[str, Any]) -> UserAccount:
    return UserAccount(
        id=int(entry["id"]),
        login=str(entry["login"]),
        name=entry.get("name") or "",
    )


class RegistryApiClient:
    """crates.io API 客户端（线程安全）"""

    def __init__(
        self,
        base_url: str = "https://crates.io/api/v1",
        *,
        user_agent: str = "supplychain",
        timeout: float = 30.0,
        policy: RetryPolicy | None = None,
        limiter: RateLimiter | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        validate_url_scheme(base_url, context="api_url")
        self.base_url = base_url.rstrip("/")
        self.policy = policy or RetryPolicy()
        self.limiter = limiter or RateLimiter(self.policy.min_interval, sleep=sleep)
        self._sleep = sleep
        self._client = make_client(user_agent, timeout, transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RegistryApiClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # 公开查询
    # ------------------------------------------------------------------

    def owners_of(self, name: str, *, expand_teams: bool = True) -> PublisherSet:
        """查询包的发布者

        响应中未内联成员的团队，expand_teams=True 时追加请求展开为成员用户。

        Raises:
            ApiError: not_found / client_error / transient / invalid_response
        """
        data = self._get_json(f"/crates/{quote(name, safe='')}/owners")
        accounts: list[UserAccount | TeamAccount] = []
        for entry in self._entries(data, name):
            try:
                if entry.get("kind", "user") == "team":
                    members = None
                    if isinstance(entry.get("members"), list):
                        members = tuple(_parse_user(m) for m in entry["members"])
                    accounts.append(TeamAccount.from_login(
                        int(entry["id"]), str(entry["login"]), members,
                    ))
                else:
                    accounts.append(_parse_user(entry))
            except (KeyError, TypeError, ValueError) as e:
                raise ApiError("invalid_response", f"{name} 的 owner 条目无法解析: {entry!r}") from e

        publishers = PublisherSet(accounts)
        for team in publishers.teams:
            if team.members is not None:
                publishers = publishers.expand_team(team, team.members)
            elif expand_teams:
                publishers = publishers.expand_team(team, self.team_members(team))
        logger.debug("API: %s -> %d 个发布者", name, len(publishers))
        return publishers

    def team_members(self, team: TeamAccount) -> tuple[UserAccount, ...]:
        """查询团队成员

        Raises:
            ApiError: 同 owners_of
        """
        data = self._get_json(f"/teams/{quote(team.login, safe='')}/members")
        try:
            members = tuple(_parse_user(e) for e in self._entries(data, team.login))
        except (KeyError, TypeError, ValueError) as e:
            raise ApiError("invalid_response", f"团队 {team.login} 的成员条目无法解析") from e
        logger.debug("API: 团队 %s -> %d 个成员", team.login, len(members))
        return members

    # ------------------------------------------------------------------
    # 请求 + 重试
    # ------------------------------------------------------------------

    @staticmethod
    def _entries(data: Any, subject: str) -> list[dict[str, Any]]:
        users = data.get("users") if isinstance(data, dict) else None
        if not isinstance(users, list) or not all(isinstance(u, dict) for u in users):
            raise ApiError("invalid_response", f"{subject} 的响应缺少 users 列表")
        return users

    def _get_json(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        last_error = ""
        for attempt in range(1, self.policy.max_attempts + 1):
            self.limiter.wait()
            try:
                response = self._client.get(url)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
            except httpx.TooManyRedirects as e:
                raise ApiError("client_error", f"重定向次数过多: {url}") from e
            except httpx.RequestError as e:
                # DecodingError 等：响应已到达但无法解码，重试无意义
                raise ApiError(
                    "invalid_response", f"响应无法解码: {url} - {type(e).__name__}: {e}",
                ) from e
            else:
                status = response.status_code
                if status == 404:
                    raise ApiError("not_found", f"未找到: {url}", status_code=status)
                if 400 <= status < 500:
                    raise ApiError(
                        "client_error", f"请求被拒绝 (HTTP {status}): {url}",
                        status_code=status,
                    )
                if status < 400:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise ApiError(
                            "invalid_response", f"响应不是合法 JSON: {url}",
                            status_code=status,
                        ) from e
                last_error = f"HTTP {status}"

            if attempt < self.policy.max_attempts:
                delay = self.policy.backoff(attempt)
                logger.warning(
                    "请求失败 (第 %d/%d 次): %s - %s，%.1f 秒后重试",
                    attempt, self.policy.max_attempts, url, last_error, delay,
                )
                self._sleep(delay)

        raise ApiError(
            "transient",
            f"重试 {self.policy.max_attempts} 次后仍失败: {url} - {last_error}",
        )
