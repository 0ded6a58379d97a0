"""cargo metadata 解析测试"""

from __future__ import annotations

import json

import pytest

from supplychain.core.exceptions import ExecutionError
from supplychain.core.metadata import is_crates_io, parse_metadata, sourced_dependencies
from supplychain.core.registry.models import Package
from supplychain.utils.shell import CommandResult

REGISTRY = "registry+https://github.com/rust-lang/crates.io-index"
SPARSE = "sparse+https://index.crates.io/"

METADATA = {
    "packages": [
        {"name": "my-app", "version": "0.1.0", "source": None},
        {"name": "serde", "version": "1.0.200", "source": REGISTRY},
        {"name": "tokio", "version": "1.37.0", "source": SPARSE},
        {"name": "forked", "version": "0.2.0", "source": "git+https://github.com/me/forked#abc"},
        {"name": "private", "version": "1.0.0", "source": "registry+https://my-registry.example/index"},
        {"name": "serde", "version": "1.0.200", "source": REGISTRY},
        {"name": "serde", "version": "0.9.0", "source": REGISTRY},
    ],
    "workspace_members": ["my-app 0.1.0 (path+file:///src/my-app)"],
}


class FakeCargo:
    def __init__(self, stdout: str, returncode: int = 0) -> None:
        self.stdout = stdout
        self.returncode = returncode
        self.args: list[str] = []

    def execute(self, args, *, cwd=None, timeout=None) -> CommandResult:
        self.args = list(args)
        return CommandResult(self.returncode, self.stdout, "boom" if self.returncode else "")


class TestParseMetadata:
    def test_only_crates_io_packages(self) -> None:
        assert parse_metadata(METADATA) == [
            Package("serde", "1.0.200"),
            Package("tokio", "1.37.0"),
            Package("serde", "0.9.0"),
        ]

    def test_empty(self) -> None:
        assert parse_metadata({}) == []

    @pytest.mark.parametrize(("source", "expected"), [
        (REGISTRY, True),
        (SPARSE, True),
        (None, False),
        ("", False),
        ("git+https://github.com/rust-lang/crates.io-index", False),
    ])
    def test_is_crates_io(self, source, expected) -> None:
        assert is_crates_io(source) is expected


class TestSourcedDependencies:
    def test_runs_cargo_with_extra_args(self) -> None:
        cargo = FakeCargo(json.dumps(METADATA))
        pkgs = sourced_dependencies(["--manifest-path", "x/Cargo.toml"], executor=cargo)
        assert cargo.args == [
            "cargo", "metadata", "--format-version", "1",
            "--manifest-path", "x/Cargo.toml",
        ]
        assert [p.name for p in pkgs] == ["serde", "tokio", "serde"]

    def test_cargo_failure(self) -> None:
        with pytest.raises(ExecutionError, match="cargo metadata"):
            sourced_dependencies(executor=FakeCargo("", returncode=101))

    def test_invalid_json(self) -> None:
        with pytest.raises(ExecutionError, match="JSON"):
            sourced_dependencies(executor=FakeCargo("warning: something\n{"))

    def test_non_object_json(self) -> None:
        with pytest.raises(ExecutionError, match="JSON 对象"):
            sourced_dependencies(executor=FakeCargo("[1, 2]"))
