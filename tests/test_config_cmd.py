"""Tests for the config command."""

import argparse
import tomllib

from sevenzip_backup.cli.config_cmd import execute_config
from sevenzip_backup.config.loader import generate_example_config


def _args(action, config=None, output=None):
    return argparse.Namespace(
        config_action=action,
        config=str(config) if config else None,
        user_config=None,
        output=output,
        verbose=False,
        quiet=False,
        debug=False,
    )


class TestValidate:
    """Tests for config validate."""

    def test_valid(self, config_file, capsys):
        """Test a valid configuration reports its contents."""
        assert execute_config(_args("validate", config_file)) == 0
        out = capsys.readouterr().out
        assert "Configuration is valid." in out
        assert "Jobs: 3 (2 enabled)" in out
        assert "Sets: 1" in out

    def test_job_error_reported(self, tmp_path, sample_config_toml, capsys):
        """Test a job that cannot be resolved fails validation."""
        path = tmp_path / "Default.toml"
        path.write_text(sample_config_toml.replace('DefaultCompressionLevel = "-mx=5"\n', ""))

        assert execute_config(_args("validate", path)) == 1
        assert "DefaultCompressionLevel" in capsys.readouterr().out

    def test_syntax_error(self, tmp_path, capsys):
        path = tmp_path / "Default.toml"
        path.write_text("this is = = not toml")
        assert execute_config(_args("validate", path)) == 1
        assert "Configuration error" in capsys.readouterr().out


class TestInit:
    """Tests for config init."""

    def test_writes_file(self, tmp_path):
        """Test the example is written and parses as TOML."""
        output = tmp_path / "Default.toml"
        assert execute_config(_args("init", output=str(output))) == 0
        assert tomllib.loads(output.read_text()) == tomllib.loads(generate_example_config())

    def test_no_action(self, capsys):
        assert execute_config(_args(None)) == 1
        assert "Usage" in capsys.readouterr().out
