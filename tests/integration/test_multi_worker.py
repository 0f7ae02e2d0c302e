"""
Integration tests for multi-worker distributed optimization.

Tests the full stack: coordinator + multiple workers over both the in-memory
and the gRPC transport, plus the standalone node entry points.
"""

import asyncio

import pytest
import torch

from coordinator.controller import CONVERGED, ITERATION_LIMIT
from coordinator.server import CoordinatorNode
from coordinator.training_config import RunConfig
from core.dataset import create_true_weights
from core.membership import Role
from sim.train import main as sim_main
from sim.train import run_simulation
from worker import client as worker_client


def make_config(tmp_path, **overrides):
    settings = dict(
        worker_num=2,
        iter_num=15,
        learning_rate=0.002,
        dimension=3,
        samples_per_worker=32,
        output_path=str(tmp_path / "output.txt"),
    )
    settings.update(overrides)
    return RunConfig(**settings).check()


@pytest.mark.asyncio
async def test_memory_transport_run(tmp_path):
    """A full in-process run writes one record per iteration and a log."""
    config = make_config(tmp_path)

    summary = await run_simulation(config)

    assert len(summary.records) == 15
    assert summary.termination_reason == ITERATION_LIMIT
    assert summary.records[-1].total_error < summary.records[0].total_error

    text = (tmp_path / "output.txt").read_text()
    assert text.count("Iteration ") == 15
    assert "Run finished: iteration limit reached (15 iterations)" in text


@pytest.mark.asyncio
async def test_grpc_matches_memory_transport(tmp_path):
    """Transport choice does not change the numbers."""
    memory = await run_simulation(make_config(tmp_path, iter_num=8), write_log=False)
    remote = await run_simulation(make_config(tmp_path, iter_num=8, transport="grpc"), write_log=False)

    assert len(remote.records) == len(memory.records)
    for a, b in zip(memory.records, remote.records):
        assert a.weights == b.weights
        assert a.total_error == b.total_error


@pytest.mark.asyncio
async def test_many_workers_approach_true_weights(tmp_path):
    """With enough iterations the averaged weights recover the generating model."""
    config = make_config(
        tmp_path, worker_num=4, iter_num=200, learning_rate=0.002,
        samples_per_worker=64, noise_std=0.01,
    )

    summary = await run_simulation(config, write_log=False)

    true_weights = create_true_weights(config.dimension, config.seed)
    assert torch.allclose(
        torch.tensor(summary.final_weights, dtype=torch.float64), true_weights, atol=0.01
    )


@pytest.mark.asyncio
async def test_divergent_run_stops_early(tmp_path):
    config = make_config(tmp_path, iter_num=500, learning_rate=1000.0, transport="grpc")

    summary = await run_simulation(config)

    assert summary.termination_reason == CONVERGED
    assert len(summary.records) < 500
    text = (tmp_path / "output.txt").read_text()
    assert "One of the worker nodes has converged" in text


@pytest.mark.asyncio
async def test_coordinator_node_with_worker_clients(tmp_path):
    """The node entry points cooperate over a real gRPC port."""
    config = make_config(tmp_path, iter_num=5, transport="grpc", port=0, round_timeout=30.0)
    node = CoordinatorNode(config)
    await node.start()

    # Workers dial the port the hub actually bound
    worker_config = make_config(
        tmp_path, iter_num=5, transport="grpc", port=node.server.port, round_timeout=30.0
    )

    try:
        results = await asyncio.gather(
            node.coordinator.run(config.iter_num),
            *[worker_client.main(worker_config, Role.worker(i)) for i in range(2)],
        )
    finally:
        await node.stop()

    summary = results[0]
    assert len(summary.records) == 5
    assert results[1:] == [5, 5]


def test_simulation_command_line(tmp_path, capsys):
    output = tmp_path / "cli" / "output.txt"

    code = sim_main([
        '--workers', '2', '--iterations', '3', '--dimension', '2',
        '--output', str(output), '--log-level', 'WARNING',
    ])

    assert code == 0
    assert output.exists()
    assert "Optimization Complete!" in capsys.readouterr().out


def test_simulation_rejects_bad_config(capsys):
    code = sim_main(['--workers', '0', '--no-log'])

    assert code == 2
    assert "worker_num" in capsys.readouterr().err
