"""报告生成器的单元测试"""

from __future__ import annotations

import json

import pytest

from supplychain.core.registry.models import Package, PublisherSet, TeamAccount, UserAccount
from supplychain.core.registry.resolver import Resolution, ResolutionReport
from supplychain.core.reporter import ReportFormatter, get_formatter, register_formatter, render

ALICE = UserAccount(id=1, login="alice", name="Alice A")
BOB = UserAccount(id=2, login="bob")
CORE = TeamAccount(id=11, org="acme", name="core-team")


@pytest.fixture()
def report() -> ResolutionReport:
    return ResolutionReport([
        (Package("serde", "1.0.0"), Resolution(PublisherSet([ALICE]))),
        (Package("tokio"), Resolution(PublisherSet([ALICE, BOB]))),
        (Package("lonely"), Resolution(PublisherSet())),
        (Package("ghost"), Resolution(PublisherSet(), "未找到: ghost", "not_found")),
        (Package("alpha"), Resolution(PublisherSet([CORE]), "团队成员未展开（离线模式）", "offline")),
    ])


class TestPublishersFormat:
    def test_grouped_by_user(self, report: ResolutionReport) -> None:
        text = render(report, "publishers")
        assert "以下 2 个用户" in text
        assert "alice (Alice A) 通过: serde, tokio" in text
        assert "bob 通过: tokio" in text
        assert "github:acme:core-team [成员未展开] 通过: alpha" in text

    def test_empty_and_failed_distinguished(self, report: ResolutionReport) -> None:
        text = render(report, "publishers")
        assert "没有发布者: lonely" in text
        assert "以下 2 个包无法完全确定发布者" in text
        assert "ghost: [not_found]" in text
        assert "alpha: [offline]" in text


class TestCratesFormat:
    def test_one_line_per_package_in_order(self, report: ResolutionReport) -> None:
        lines = [ln for ln in render(report, "crates").splitlines() if ln.strip()[:2].rstrip(".").isdigit()]
        assert [ln.split(". ", 1)[1].split(":")[0] for ln in lines] == [
            "serde 1.0.0", "tokio", "lonely", "ghost", "alpha",
        ]

    def test_status_markers(self, report: ResolutionReport) -> None:
        text = render(report, "crates")
        assert "lonely: (无发布者)" in text
        assert "ghost: (无法确定)" in text
        assert "(不完整)" in text


class TestJSONFormat:
    def test_structure(self, report: ResolutionReport) -> None:
        data = json.loads(render(report, "json"))
        crates = {c["name"]: c for c in data["crates"]}
        assert [c["name"] for c in data["crates"]] == ["serde", "tokio", "lonely", "ghost", "alpha"]
        assert crates["serde"]["version"] == "1.0.0"
        assert crates["serde"]["publishers"] == [
            {"kind": "user", "id": 1, "login": "alice", "name": "Alice A"},
        ]
        assert crates["lonely"]["status"] == "empty"
        assert "error" not in crates["lonely"]
        assert crates["ghost"]["status"] == "failed"
        assert crates["ghost"]["error"]["kind"] == "not_found"
        assert crates["alpha"]["publishers"][0]["expanded"] is False


class TestRegistry:
    def test_unknown_format(self, report: ResolutionReport) -> None:
        with pytest.raises(ValueError, match="不支持的报告格式"):
            render(report, "xml")

    def test_register_custom(self, report: ResolutionReport) -> None:
        class CountFormatter(ReportFormatter):
            def format(self, report: ResolutionReport) -> str:
                return str(len(report))

        register_formatter("count", CountFormatter())
        assert render(report, "count") == "5"
        assert isinstance(get_formatter("count"), CountFormatter)
