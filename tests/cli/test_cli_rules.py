"""Tests for ``wtsandbox rules`` CLI commands."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import yaml
from click.testing import CliRunner

from wtsandbox.cli import main

if TYPE_CHECKING:
    from pathlib import Path


class TestRulesInit:
    def test_writes_default_rules(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yml"
        result = CliRunner().invoke(main, ["rules", "init", "--rules", str(path)])

        assert result.exit_code == 0, result.output
        assert "Wrote default rules" in result.output
        data = yaml.safe_load(path.read_text())
        assert any(rule["path_pattern"] == "*.go" for rule in data["file_rules"])

    def test_refuses_to_overwrite(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yml"
        path.write_text("file_rules: []\n")

        result = CliRunner().invoke(main, ["rules", "init", "--rules", str(path)])

        assert result.exit_code == 1
        assert "already exists" in result.output
        assert path.read_text() == "file_rules: []\n"

    def test_force_overwrites(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yml"
        path.write_text("file_rules: []\n")

        result = CliRunner().invoke(main, ["rules", "init", "--rules", str(path), "--force"])

        assert result.exit_code == 0, result.output
        assert yaml.safe_load(path.read_text())["file_rules"]

    def test_defaults_to_project_rules_file(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(main, ["rules", "init", "--repo", str(tmp_path)])

        assert result.exit_code == 0, result.output
        assert (tmp_path / ".wtsandbox" / "rules.yml").exists()


class TestRulesShow:
    def test_summary(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(main, ["rules", "show", "--rules", str(tmp_path / "missing.yml")])

        assert result.exit_code == 0, result.output
        assert "Size Limits" in result.output
        assert "Security" in result.output

    def test_json(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            main, ["rules", "show", "--rules", str(tmp_path / "missing.yml"), "--json"]
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert "file_rules" in data
        assert "security_rules" in data

    def test_for_path(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            main,
            ["rules", "show", "--rules", str(tmp_path / "missing.yml"), "--path", "pkg/main.go", "--json"],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [r["name"] for r in data["file_rules"]] == ["Go source files"]
        assert {r["name"] for r in data["content_rules"]} == {"No credentials", "No dangerous operations"}

    def test_no_rules_for_path(self, tmp_path: Path) -> None:
        rules = tmp_path / "rules.yml"
        rules.write_text("file_rules: []\ncontent_rules: []\n")

        result = CliRunner().invoke(
            main, ["rules", "show", "--rules", str(rules), "--path", "anything.bin"]
        )

        assert result.exit_code == 0, result.output
        assert "No file or content rules apply." in result.output
