"""网络工具 — URL 安全校验 + httpx 客户端构造"""

from __future__ import annotations

from urllib.parse import urlparse

import httpx

from supplychain.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def make_client(
    user_agent: str,
    timeout: float,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """构造带统一 User-Agent 的同步 httpx 客户端

    crates.io 拒绝没有 User-Agent 的请求。transport 用于测试注入 MockTransport。
    """
    return httpx.Client(
        headers={"User-Agent": user_agent},
        timeout=timeout,
        follow_redirects=True,
        transport=transport,
    )
