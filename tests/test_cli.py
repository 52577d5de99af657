"""Tests for the siege command line."""
from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest

from siege_proxy import cli
from siege_proxy.config import SiegeConfig


def _args(*argv):
    return cli.build_parser().parse_args(list(argv))


class TestResolveConfig:
    def test_flags(self):
        config = cli.resolve_config(
            _args(
                "--node.addr", "http://10.0.0.1:8545",
                "--siege.addr", "http://0.0.0.0:9001",
                "--cannon", "/usr/local/bin/cannon",
                "--verifier.timeout", "120",
                "--log.level", "debug",
                "--log.format", "json",
                "--no-log.color",
            )
        )
        assert config.node_addr == "http://10.0.0.1:8545"
        assert config.listen_port == 9001
        assert config.verifier_path == "/usr/local/bin/cannon"
        assert config.verifier_timeout == 120.0
        assert config.log_level == "debug"
        assert config.log_format == "json"
        assert config.log_color is False

    def test_flags_override_config_file(self, tmp_path):
        path = tmp_path / "siege.yaml"
        path.write_text("cannon: /from/file\nnode.addr: http://file:8545\n", encoding="utf-8")
        config = cli.resolve_config(_args("--config", str(path), "--cannon", "/from/flag"))
        assert config.verifier_path == "/from/flag"
        assert config.node_addr == "http://file:8545"

    def test_invalid_flag_value_exits(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--node.addr", "not a url"])
        assert exc.value.code == 2


class TestMitmdump:
    def test_command(self):
        config = SiegeConfig(node_addr="http://10.0.0.1:8545", listen_addr="http://0.0.0.0:9001")
        cmd = cli.mitmdump_command(config, Path("/srv/siege_addon.py"))
        assert cmd[0] == "mitmdump"
        assert cmd[cmd.index("--mode") + 1] == "reverse:http://10.0.0.1:8545"
        assert cmd[cmd.index("-p") + 1] == "9001"
        assert cmd[cmd.index("--listen-host") + 1] == "0.0.0.0"
        assert cmd[cmd.index("-s") + 1] == "/srv/siege_addon.py"
        assert "connection_strategy=lazy" in cmd

    def test_addon_script_is_found(self):
        assert cli.addon_script_path().name == "siege_addon.py"

    def test_run_passes_config_through_env(self, tmp_path):
        env_file = tmp_path / "env.json"
        fake = tmp_path / "mitmdump"
        fake.write_text(f'#!/bin/sh\nprintf "%s" "$SIEGE_CONFIG" > "{env_file}"\nexit 3\n', encoding="utf-8")
        fake.chmod(fake.stat().st_mode | stat.S_IXUSR)
        config = SiegeConfig(verifier_path="/opt/cannon")
        assert cli.run(config, str(fake)) == 3
        assert SiegeConfig.from_dict(json.loads(env_file.read_text())) == config

    def test_run_missing_mitmdump(self, tmp_path):
        assert cli.run(SiegeConfig(), str(tmp_path / "missing")) == 1
