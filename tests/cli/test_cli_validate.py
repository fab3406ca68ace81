"""Tests for ``wtsandbox validate`` CLI command."""

from __future__ import annotations

from typing import TYPE_CHECKING

from click.testing import CliRunner

from wtsandbox.cli import main

if TYPE_CHECKING:
    from pathlib import Path


class TestValidateCommand:
    def test_all_pass(self, tmp_path: Path) -> None:
        (tmp_path / "main.go").write_text("package main\n")
        (tmp_path / "README.md").write_text("# hi\n")

        result = CliRunner().invoke(
            main,
            ["validate", str(tmp_path / "main.go"), str(tmp_path / "README.md"), "--repo", str(tmp_path)],
        )

        assert result.exit_code == 0, result.output
        assert "OK" in result.output
        assert "All 2 file(s) passed validation." in result.output

    def test_blocked_content_fails(self, tmp_path: Path) -> None:
        (tmp_path / "main.go").write_text('package main\n\nfunc main() { os.Exit(1) }\n')
        (tmp_path / "notes.md").write_text("fine\n")

        result = CliRunner().invoke(
            main,
            ["validate", str(tmp_path / "main.go"), str(tmp_path / "notes.md"), "--repo", str(tmp_path)],
        )

        assert result.exit_code == 1
        assert "FAIL" in result.output
        assert "main.go" in result.output
        assert "1 of 2 file(s) failed validation." in result.output

    def test_explicit_rules_file(self, tmp_path: Path) -> None:
        rules = tmp_path / "rules.yml"
        rules.write_text(
            "content_rules:\n"
            "  - name: no-fixme\n"
            "    path_pattern: \"*.md\"\n"
            "    blocked_patterns: [FIXME]\n"
        )
        (tmp_path / "notes.md").write_text("FIXME later\n")

        result = CliRunner().invoke(
            main, ["validate", str(tmp_path / "notes.md"), "--repo", str(tmp_path), "--rules", str(rules)]
        )

        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_requires_files(self) -> None:
        result = CliRunner().invoke(main, ["validate"])
        assert result.exit_code != 0
