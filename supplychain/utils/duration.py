"""人类可读时长解析 — 如 `1w`、`1d 6h`、`90min`"""

from __future__ import annotations

import re
from datetime import timedelta

_UNITS: dict[str, float] = {
    "s": 1, "sec": 1, "secs": 1, "second": 1, "seconds": 1,
    "m": 60, "min": 60, "mins": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hr": 3600, "hrs": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
    "w": 604800, "week": 604800, "weeks": 604800,
}

_TOKEN_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([a-zA-Z]+)")


def parse_duration(text: str) -> timedelta:
    """解析时长字符串，多个片段累加

    Raises:
        ValueError: 格式无法识别或单位未知
    """
    stripped = text.strip()
    if not stripped:
        raise ValueError("时长为空")

    total = 0.0
    pos = 0
    for m in _TOKEN_RE.finditer(stripped):
        if stripped[pos:m.start()].strip():
            raise ValueError(f"无法解析时长: {text!r}")
        unit = m.group(2).lower()
        if unit not in _UNITS:
            raise ValueError(f"未知的时间单位 '{unit}': {text!r}")
        total += float(m.group(1)) * _UNITS[unit]
        pos = m.end()

    if pos == 0 or stripped[pos:].strip():
        raise ValueError(f"无法解析时长: {text!r}")
    return timedelta(seconds=total)
