"""
Tests for the process launcher's argument handling.
"""

import importlib.util
import json
from pathlib import Path

import pytest

from coordinator import server as coordinator_server
from coordinator.training_config import config_from_args
from core.exceptions import ConfigurationError
from worker import client as worker_client


SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "start_services.py"


@pytest.fixture(scope="module")
def launcher():
    module_spec = importlib.util.spec_from_file_location("start_services", SCRIPT)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "run.json"
    path.write_text(json.dumps({"worker_num": 4, "iter_num": 7}))
    return str(path)


def node_config(node):
    """Parse a node's command line with that node's own parser."""
    parse_args = coordinator_server.parse_args if node.name == "coordinator" else worker_client.parse_args
    return config_from_args(parse_args(node.args))


class TestLauncherConfig:
    """Test that the launcher and its nodes agree on the run."""

    def test_worker_count_from_config_file(self, launcher, config_file):
        args = launcher.parse_args(["--config", config_file])
        config = launcher.resolve_config(args)

        assert config.worker_num == 4
        assert config.iter_num == 7
        assert len(launcher.build_nodes(config.worker_num, launcher.shared_flags(args))) == 5

    def test_unset_flags_not_forwarded(self, launcher, config_file):
        args = launcher.parse_args(["--config", config_file])

        assert launcher.shared_flags(args) == ["--config", config_file]

    def test_nodes_see_config_file_values(self, launcher, config_file):
        args = launcher.parse_args(["--config", config_file])
        config = launcher.resolve_config(args)
        nodes = launcher.build_nodes(config.worker_num, launcher.shared_flags(args))

        for node in nodes:
            seen = node_config(node)
            assert seen.worker_num == 4
            assert seen.iter_num == 7

    def test_explicit_flags_override_config_file(self, launcher, config_file):
        args = launcher.parse_args(["--config", config_file, "--workers", "3", "--port", "6000"])
        config = launcher.resolve_config(args)
        nodes = launcher.build_nodes(config.worker_num, launcher.shared_flags(args))

        assert config.worker_num == 3
        assert config.iter_num == 7
        assert len(nodes) == 4
        seen = node_config(nodes[-1])
        assert seen.worker_num == 3
        assert seen.port == 6000

    def test_defaults_without_config(self, launcher):
        args = launcher.parse_args([])
        config = launcher.resolve_config(args)

        assert launcher.shared_flags(args) == []
        assert config.worker_num == 2
        assert len(launcher.build_nodes(config.worker_num, [])) == 3

    def test_invalid_worker_count_rejected(self, launcher):
        with pytest.raises(ConfigurationError):
            launcher.resolve_config(launcher.parse_args(["--workers", "0"]))

    def test_worker_nodes_carry_index(self, launcher):
        nodes = launcher.build_nodes(2, ["--iterations", "5"])

        assert nodes[0].module == "coordinator.server"
        assert nodes[2].args == ["--index", "1", "--iterations", "5"]
