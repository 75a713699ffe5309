import json
import os
from pathlib import Path

import pytest
from click.testing import CliRunner

from modstage import __version__
from modstage.commands import cli
from modstage.config import load_settings

from tests.conftest import write_tree


@pytest.fixture
def runner():
    """Create a CliRunner for testing."""
    return CliRunner()


@pytest.fixture
def cli_config(mock_config_dir: Path, temp_dir: Path) -> Path:
    """Config that keeps records and deploys inside the temp dir."""
    config_path = mock_config_dir / "config.json"
    config_path.write_text(
        json.dumps({"deploy_method": "copy", "records_dir": str(temp_dir / "records")})
    )
    return config_path


class TestCli:
    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for name in ("inspect", "plan", "install", "deploy", "config"):
            assert name in result.output


class TestInspect:
    def test_text_output(self, runner, opt_staging):
        result = runner.invoke(cli, ["inspect", str(opt_staging)])
        assert result.exit_code == 0
        assert "Installer: Test Mod" in result.output
        assert "Step 1: Main" in result.output
        assert "[x] Opt1" in result.output
        assert "[ ] Opt2" in result.output

    def test_json_output(self, runner, opt_staging):
        result = runner.invoke(cli, ["inspect", "--json", str(opt_staging)])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["module_name"] == "Test Mod"
        options = data["steps"][0]["groups"][0]["options"]
        assert [o["flags"] for o in options] == [{"F": "1"}, {"F": "2"}]
        assert data["warnings"] == []

    def test_no_installer(self, runner, temp_dir):
        write_tree(temp_dir, {"plain/readme.txt": "hi"})
        result = runner.invoke(cli, ["inspect", str(temp_dir / "plain")])
        assert result.exit_code == 1
        assert "Error: " in result.output
        assert "no fomod installer" in result.output


class TestPlan:
    def test_select_by_name(self, runner, cli_config, opt_staging, temp_dir):
        result = runner.invoke(
            cli,
            [
                "plan", str(opt_staging), str(temp_dir / "target"),
                "-p", "pkg", "--select", "Main/Variant/Opt2", "--json",
            ],
        )
        assert result.exit_code == 0, result.output
        plan = json.loads(result.output)
        assert [op["source"] for op in plan["operations"]] == ["b.txt"]
        assert plan["flags"] == {"F": "2"}
        assert not (temp_dir / "target").exists()

    def test_select_by_index(self, runner, cli_config, opt_staging, temp_dir):
        result = runner.invoke(
            cli, ["plan", str(opt_staging), str(temp_dir / "t"), "-p", "pkg", "-s", "0/0/1"]
        )
        assert result.exit_code == 0, result.output
        assert "Main/Variant/Opt2" in result.output
        assert "b.txt -> b.txt" in result.output

    def test_unknown_option(self, runner, cli_config, opt_staging, temp_dir):
        result = runner.invoke(
            cli, ["plan", str(opt_staging), str(temp_dir / "t"), "-p", "pkg", "-s", "Main/Variant/Opt9"]
        )
        assert result.exit_code == 1
        assert "no option in group 'Variant' named 'Opt9'" in result.output

    def test_bad_flag_assignment(self, runner, cli_config, opt_staging, temp_dir):
        result = runner.invoke(
            cli, ["plan", str(opt_staging), str(temp_dir / "t"), "-p", "pkg", "--flag", "nope"]
        )
        assert result.exit_code == 2
        assert "NAME=VALUE" in result.output

    def test_interactive_without_tty(self, runner, cli_config, opt_staging, temp_dir, mock_no_tty):
        result = runner.invoke(
            cli, ["plan", str(opt_staging), str(temp_dir / "t"), "-p", "pkg", "-i"]
        )
        assert result.exit_code == 1
        assert "requires a TTY" in result.output

    def test_reuse_without_record(self, runner, cli_config, opt_staging, temp_dir):
        result = runner.invoke(
            cli, ["plan", str(opt_staging), str(temp_dir / "t"), "-p", "pkg", "--reuse"]
        )
        assert result.exit_code == 2
        assert "no stored selection for 'pkg'" in result.output

    @pytest.mark.parametrize("extra", [["--flag", "F=9"], ["-s", "Main/Variant/Opt1"]])
    def test_reuse_rejects_new_choices(self, runner, cli_config, opt_staging, temp_dir, extra):
        result = runner.invoke(
            cli, ["plan", str(opt_staging), str(temp_dir / "t"), "-p", "pkg", "--reuse", *extra]
        )
        assert result.exit_code == 2
        assert "--reuse cannot be combined with --select or --flag" in result.output


class TestInstall:
    def test_install_saves_record_and_reuse_replays(self, runner, cli_config, opt_staging, temp_dir):
        target = temp_dir / "target"
        result = runner.invoke(
            cli,
            ["install", str(opt_staging), str(target), "-p", "pkg", "--profile", "main",
             "-s", "Main/Variant/Opt2", "--yes"],
        )
        assert result.exit_code == 0, result.output
        assert "Installed 1 file(s)" in result.output
        assert (target / "b.txt").read_text() == "bravo"
        assert not (target / "a.txt").exists()
        assert len(list((temp_dir / "records").glob("*.json"))) == 1

        result = runner.invoke(
            cli,
            ["plan", str(opt_staging), str(target), "-p", "pkg", "--profile", "main",
             "--reuse", "--json"],
        )
        assert result.exit_code == 0, result.output
        plan = json.loads(result.output)
        assert plan["flags"] == {"F": "2"}
        # Re-planning over our own install reports the overwrite
        assert [c["path"] for c in plan["conflicts"]] == ["b.txt"]

    def test_declined_confirmation(self, runner, cli_config, opt_staging, temp_dir):
        result = runner.invoke(
            cli, ["install", str(opt_staging), str(temp_dir / "t"), "-p", "pkg"], input="n\n"
        )
        assert result.exit_code == 0
        assert "Cancelled." in result.output
        assert not (temp_dir / "t").exists()

    def test_locked_target(self, runner, cli_config, opt_staging, temp_dir):
        (temp_dir / ".t.lock").write_text("{}")
        result = runner.invoke(
            cli, ["install", str(opt_staging), str(temp_dir / "t"), "-p", "pkg", "-y"]
        )
        assert result.exit_code == 1
        assert "locked by another writer" in result.output


class TestDeploy:
    def test_deploy_units_file(self, runner, cli_config, temp_dir):
        write_tree(temp_dir / "mods" / "a", {"x.esp": "a"})
        write_tree(temp_dir / "mods" / "b", {"x.esp": "b", "Data/meshes/m.nif": "m"})
        write_tree(temp_dir / "mods" / "off", {"y.esp": "off"})
        game = temp_dir / "game"
        game.mkdir()
        units = temp_dir / "units.json"
        units.write_text(
            json.dumps(
                {
                    "units": [
                        {"name": "A", "path": "mods/a", "priority": 1},
                        {"name": "B", "path": "mods/b", "priority": 2},
                        {"name": "Off", "path": "mods/off", "enabled": False},
                    ]
                }
            )
        )
        result = runner.invoke(cli, ["deploy", str(units), str(game), "-v"])
        assert result.exit_code == 0, result.output
        assert "Deployed 2 file(s) from 2 unit(s) using copy" in result.output
        assert "x.esp" in result.output
        assert (game / "Data" / "x.esp").read_text() == "b"
        assert (game / "Data" / "meshes" / "m.nif").exists()
        assert not (game / "Data" / "y.esp").exists()

    def test_empty_units_purges(self, runner, cli_config, temp_dir):
        write_tree(temp_dir / "mods" / "a", {"new.esp": "new"})
        game = temp_dir / "game"
        write_tree(game, {"Data/old.esp": "old"})
        units = temp_dir / "units.yaml"
        units.write_text("units:\n  - name: A\n    path: mods/a\n")
        assert runner.invoke(cli, ["deploy", str(units), str(game)]).exit_code == 0
        assert (game / "Data" / "new.esp").exists()

        units.write_text("units: []\n")
        result = runner.invoke(cli, ["deploy", str(units), str(game)])
        assert result.exit_code == 0, result.output
        assert "Purged deployment" in result.output
        assert not (game / "Data" / "new.esp").exists()
        assert (game / "Data" / "old.esp").read_text() == "old"

    def test_symlinks_from_relative_units_file(self, runner, cli_config, temp_dir, monkeypatch):
        write_tree(temp_dir / "mods" / "a", {"x.esp": "a"})
        (temp_dir / "game").mkdir()
        (temp_dir / "units.json").write_text(
            json.dumps({"units": [{"name": "A", "path": "mods/a"}]})
        )
        monkeypatch.chdir(temp_dir)
        result = runner.invoke(cli, ["deploy", "units.json", "game", "--method", "symlink"])
        assert result.exit_code == 0, result.output
        link = temp_dir / "game" / "Data" / "x.esp"
        assert link.is_symlink()
        assert Path(os.readlink(link)).is_absolute()
        assert link.read_text() == "a"

    def test_bad_units_file(self, runner, cli_config, temp_dir):
        units = temp_dir / "units.json"
        units.write_text('{"units": [{"name": "A"}]}')
        game = temp_dir / "game"
        game.mkdir()
        result = runner.invoke(cli, ["deploy", str(units), str(game)])
        assert result.exit_code == 1
        assert "units[0] field 'path' is required" in result.output


class TestConfigFmt:
    def test_fmt_stdout(self, runner, temp_dir):
        path = temp_dir / "config.json"
        path.write_text('{\n  // comment\n  "deploy_method": "copy",\n}')
        result = runner.invoke(cli, ["config", "fmt", str(path)])
        assert result.exit_code == 0
        assert json.loads(result.output) == {"deploy_method": "copy"}

    def test_fmt_write(self, runner, temp_dir):
        path = temp_dir / "config.json"
        path.write_text('{"data_dir": "Data",}')
        result = runner.invoke(cli, ["config", "fmt", "--write", str(path)])
        assert result.exit_code == 0
        assert path.read_text() == '{\n  "data_dir": "Data"\n}\n'

    def test_fmt_invalid(self, runner, temp_dir):
        path = temp_dir / "config.json"
        path.write_text('{"a": }')
        result = runner.invoke(cli, ["config", "fmt", str(path)])
        assert result.exit_code == 1
        assert "syntax error" in result.output

    def test_fmt_default_path_not_found(self, runner, mock_config_dir):
        result = runner.invoke(cli, ["config", "fmt"])
        assert result.exit_code == 1
        assert "File not found" in result.output


class TestConfigInit:
    def test_init_creates_defaults(self, runner, mock_config_dir):
        result = runner.invoke(cli, ["config", "init"])
        assert result.exit_code == 0
        assert load_settings().deploy_method == "symlink"

    def test_init_existing_without_force(self, runner, cli_config):
        result = runner.invoke(cli, ["config", "init"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_init_force_backs_up(self, runner, cli_config):
        original = cli_config.read_text()
        result = runner.invoke(cli, ["config", "init", "--force"])
        assert result.exit_code == 0
        assert cli_config.with_name("config.json.bak").read_text() == original
        assert load_settings().deploy_method == "symlink"
