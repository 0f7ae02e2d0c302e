"""
Tests for run configuration and group formation.
"""

import argparse
import json

import pytest

from coordinator.training_config import (
    RunConfig,
    add_config_arguments,
    config_from_args,
    load_config,
)
from core.exceptions import ConfigurationError, UnknownMemberError
from core.membership import COORDINATOR_ID, Role, form_group, worker_id


class TestRunConfig:
    """Test RunConfig validation and serialization."""

    def test_defaults_are_valid(self):
        config = RunConfig()

        assert config.validate() == []
        assert config.check() is config
        assert config.address == "127.0.0.1:50051"

    def test_invalid_values_reported(self):
        config = RunConfig(worker_num=0, iter_num=-1, learning_rate=0.0, update_rule="adam")
        errors = config.validate()

        assert len(errors) == 4
        assert any("worker_num" in e for e in errors)
        assert any("iter_num" in e for e in errors)

    def test_check_raises(self):
        with pytest.raises(ConfigurationError, match="iter_num"):
            RunConfig(iter_num=0).check()

    def test_invalid_transport_and_timeout(self):
        errors = RunConfig(transport="carrier-pigeon", round_timeout=-1.0).validate()

        assert len(errors) == 2

    def test_json_round_trip(self, tmp_path):
        path = tmp_path / "run.json"
        config = RunConfig(worker_num=5, iter_num=30, learning_rate=0.01, transport="grpc")
        config.to_json_file(str(path))

        loaded = RunConfig.from_json_file(str(path))

        assert loaded == config
        assert json.loads(config.to_json())["worker_num"] == 5

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigurationError):
            RunConfig.from_dict({"worker_num": 2, "num_epochs": 3})

    def test_repr(self):
        assert "workers=2" in repr(RunConfig())


class TestLoadConfig:
    """Test loading configuration with overrides."""

    def test_overrides(self, tmp_path):
        path = tmp_path / "run.json"
        path.write_text(json.dumps({"worker_num": 4, "iter_num": 8}))

        config = load_config(str(path), iter_num=12, learning_rate=None)

        assert config.worker_num == 4
        assert config.iter_num == 12
        assert config.learning_rate == RunConfig().learning_rate

    def test_invalid_override(self):
        with pytest.raises(ConfigurationError):
            load_config(worker_num=-2)

    def test_unknown_override(self):
        with pytest.raises(ConfigurationError):
            load_config(batch_size=32)

    def test_from_command_line(self):
        parser = argparse.ArgumentParser()
        add_config_arguments(parser)
        args = parser.parse_args([
            '--workers', '3', '--iterations', '7', '--lr', '0.05',
            '--update-rule', 'local', '--round-timeout', '2.5',
        ])

        config = config_from_args(args, transport="grpc")

        assert config.worker_num == 3
        assert config.iter_num == 7
        assert config.learning_rate == 0.05
        assert config.update_rule == "local"
        assert config.round_timeout == 2.5
        assert config.transport == "grpc"

    def test_command_line_defaults(self):
        parser = argparse.ArgumentParser()
        add_config_arguments(parser)

        assert config_from_args(parser.parse_args([])) == RunConfig()


class TestMembership:
    """Test group formation and roles."""

    def test_form_group(self):
        membership = form_group(3, vector_length=4, group_id="g")

        assert membership.group_id == "g"
        assert membership.coordinator_id == COORDINATOR_ID
        assert membership.worker_ids == ("Worker_0", "Worker_1", "Worker_2")
        assert membership.members[0] == COORDINATOR_ID
        assert membership.worker_num == 3
        assert membership.vector_length == 4

    def test_invalid_sizes(self):
        with pytest.raises(ConfigurationError):
            form_group(0, 4)
        with pytest.raises(ConfigurationError):
            form_group(2, 0)

    def test_membership_lookup(self):
        membership = form_group(2, 4)

        assert "Worker_1" in membership
        assert "Worker_2" not in membership
        membership.require_member(COORDINATOR_ID)
        with pytest.raises(UnknownMemberError):
            membership.require_member("Worker_9")

    def test_membership_is_immutable(self):
        membership = form_group(2, 4)

        with pytest.raises(AttributeError):
            membership.vector_length = 8

    def test_roles(self):
        roles = form_group(2, 4).roles()

        assert roles[0].is_coordinator
        assert [r.member_id for r in roles] == [COORDINATOR_ID, "Worker_0", "Worker_1"]
        assert Role.worker(5).member_id == worker_id(5)
        assert not Role.worker(0).is_coordinator
