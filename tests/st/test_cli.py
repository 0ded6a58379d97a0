"""命令行端到端测试：update / publishers / crates"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

import supplychain.cli.cmd_cache as cmd_cache
import supplychain.cli.cmd_query as cmd_query
from supplychain import __version__
from supplychain.cli import main
from supplychain.core.config import get_config
from supplychain.services.publisher_service import PublisherService
from supplychain.utils.logger import reset_logging
from supplychain.utils.shell import CommandResult

REGISTRY = "registry+https://github.com/rust-lang/crates.io-index"


class FakeCargo:
    def __init__(self, names: list[str], returncode: int = 0) -> None:
        self.returncode = returncode
        self.payload = json.dumps({"packages": [
            {"name": n, "version": "1.0.0", "source": REGISTRY} for n in names
        ]})
        self.calls: list[list[str]] = []

    def execute(self, args, *, cwd=None, timeout=None) -> CommandResult:
        self.calls.append(list(args))
        if self.returncode:
            return CommandResult(self.returncode, "", "error: could not find `Cargo.toml`")
        return CommandResult(0, self.payload, "")


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SUPPLYCHAIN_LOG_LEVEL", "ERROR")
    yield
    reset_logging()


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "supplychain.yml"
    path.write_text(yaml.safe_dump({
        "cache_dir": str(tmp_path / "cache"),
        "base_delay": 0.0,
        "min_interval": 0.0,
        "refresh_attempts": 1,
        "refresh_delay": 0.0,
    }), encoding="utf-8")
    return path


@pytest.fixture()
def cargo() -> FakeCargo:
    return FakeCargo(["serde", "tokio", "lonely", "ghost"])


@pytest.fixture()
def cli(monkeypatch: pytest.MonkeyPatch, config_file: Path, fake_registry, cargo):
    """注入 MockTransport 与假 cargo 后调用 CLI"""

    def _service(max_age):
        return PublisherService(
            get_config(), max_age=max_age,
            transport=fake_registry.transport, executor=cargo,
        )

    monkeypatch.setattr(cmd_cache, "_service", _service)
    monkeypatch.setattr(cmd_query, "_service", _service)
    runner = CliRunner()

    def _invoke(*args: str):
        return runner.invoke(main, ["-c", str(config_file), *args])

    return _invoke


# =========================================================================
# update
# =========================================================================


class TestUpdate:
    def test_downloads_once_while_fresh(self, cli, fake_registry) -> None:
        first = cli("update")
        assert first.exit_code == 0, first.output
        assert "快照就绪" in first.output

        second = cli("update")
        assert second.exit_code == 0
        assert fake_registry.dump_requests == 1

    def test_force(self, cli, fake_registry) -> None:
        cli("update")
        assert cli("update", "--force").exit_code == 0
        assert fake_registry.dump_requests == 2

    def test_cache_max_age_zero_refreshes(self, cli, fake_registry) -> None:
        cli("update")
        assert cli("update", "--cache-max-age", "0s").exit_code == 0
        assert fake_registry.dump_requests == 2

    def test_invalid_cache_max_age(self, cli) -> None:
        result = cli("update", "--cache-max-age", "forever")
        assert result.exit_code == 2
        assert "cache-max-age" in result.output

    def test_download_failure_exits_1(self, cli, fake_registry) -> None:
        fake_registry.dump_status = 502
        result = cli("update")
        assert result.exit_code == 1
        assert "Error:" in result.output


# =========================================================================
# publishers / crates
# =========================================================================


class TestQuery:
    def test_crates_text(self, cli) -> None:
        result = cli("crates")
        assert result.exit_code == 0, result.output
        assert "serde 1.0.0: alice (Alice A)" in result.output
        assert "lonely 1.0.0: (无发布者)" in result.output
        assert "ghost 1.0.0: (无法确定)" in result.output

    def test_publishers_text(self, cli) -> None:
        result = cli("publishers")
        assert result.exit_code == 0, result.output
        assert "alice (Alice A) 通过: serde, tokio" in result.output
        assert "carol (Carol) 通过: tokio" in result.output

    def test_json_output(self, cli, fake_registry) -> None:
        fake_registry.owners["ghost"] = [{"id": 9, "login": "gh0st", "kind": "user", "name": None}]
        result = cli("crates", "--format", "json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [c["name"] for c in data["crates"]] == ["serde", "tokio", "lonely", "ghost"]
        assert data["crates"][3]["publishers"][0]["login"] == "gh0st"

    def test_metadata_args_after_double_dash(self, cli, cargo) -> None:
        result = cli("crates", "--", "--filter-platform", "x86_64-unknown-linux-gnu")
        assert result.exit_code == 0, result.output
        assert cargo.calls[0][-2:] == ["--filter-platform", "x86_64-unknown-linux-gnu"]

    def test_offline_without_snapshot(self, cli, fake_registry) -> None:
        result = cli("crates", "--offline")
        assert result.exit_code == 0, result.output
        assert fake_registry.dump_requests == 0
        assert fake_registry.api_requests == []
        assert "以下 4 个包无法完全确定发布者" in result.output

    def test_cargo_failure(self, cli, cargo) -> None:
        cargo.returncode = 101
        result = cli("publishers")
        assert result.exit_code == 1
        assert "cargo metadata" in result.output


# =========================================================================
# 配置错误
# =========================================================================


class TestBadConfig:
    def _rewrite(self, config_file: Path, **overrides) -> None:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        data.update(overrides)
        config_file.write_text(yaml.safe_dump(data), encoding="utf-8")

    def test_invalid_cache_max_age_in_file(self, cli, config_file: Path) -> None:
        self._rewrite(config_file, cache_max_age="soon")
        result = cli("update")
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "cache_max_age" in result.output

    def test_non_http_dump_url(self, cli, config_file: Path, fake_registry) -> None:
        self._rewrite(config_file, dump_url="file:///etc/passwd")
        result = cli("crates")
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert fake_registry.dump_requests == 0

    def test_malformed_yaml(self, config_file: Path) -> None:
        config_file.write_text("cache_dir: [unclosed\n", encoding="utf-8")
        result = CliRunner().invoke(main, ["-c", str(config_file), "update"])
        assert result.exit_code == 1
        assert "无法加载配置" in result.output


def test_version() -> None:
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
