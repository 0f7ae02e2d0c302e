"""
Launch a Concord run as separate processes.

Starts one coordinator node and N worker nodes, each with its role given
explicitly on the command line, and interleaves their output with a
per-node colour prefix. The run is over when every node has exited.

Usage:
    # Two workers, 50 iterations
    python scripts/start_services.py --workers 2 --iterations 50

    # Shared JSON configuration, per-node log files
    python scripts/start_services.py --config run.json --logs-dir logs
"""

import argparse
import asyncio
import signal
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from coordinator.training_config import RunConfig, load_config
from core.exceptions import ConcordError


RESET = '\033[0m'
BOLD = '\033[1m'
DIM = '\033[2m'
RED = '\033[91m'
COORDINATOR_COLOR = '\033[94m'
WORKER_COLORS = ['\033[92m', '\033[93m', '\033[96m', '\033[95m']


@dataclass
class NodeSpec:
    """One process of the run."""

    name: str
    module: str
    args: List[str]
    color: str

    def command(self) -> List[str]:
        return [sys.executable, "-m", self.module, *self.args]


def build_nodes(worker_num: int, shared: List[str]) -> List[NodeSpec]:
    """Coordinator first, then workers by index."""
    nodes = [NodeSpec("coordinator", "coordinator.server", shared, COORDINATOR_COLOR)]
    for index in range(worker_num):
        nodes.append(NodeSpec(
            f"worker-{index}",
            "worker.client",
            ['--index', str(index), *shared],
            WORKER_COLORS[index % len(WORKER_COLORS)],
        ))
    return nodes


class NodeLauncher:
    """Runs node processes and prefixes their output."""

    def __init__(self, root: Path, logs_dir: Optional[Path] = None):
        self.root = root
        self.logs_dir = logs_dir
        self.running: Dict[str, asyncio.subprocess.Process] = {}
        self.stopping = False

        if logs_dir is not None:
            logs_dir.mkdir(parents=True, exist_ok=True)

    def emit(self, node: NodeSpec, text: str):
        stamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        print(f"{DIM}{stamp}{RESET} {node.color}{node.name:12}{RESET} │ {text.rstrip()}", flush=True)

    async def launch(self, node: NodeSpec) -> int:
        """Run one node to completion and return its exit code."""
        self.emit(node, f"{BOLD}starting{RESET}")
        log = open(self.logs_dir / f"{node.name}.log", 'a') if self.logs_dir else None

        try:
            process = await asyncio.create_subprocess_exec(
                *node.command(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.root,
            )
            self.running[node.name] = process

            async for raw in process.stdout:
                line = raw.decode('utf-8', errors='replace')
                self.emit(node, line)
                if log is not None:
                    log.write(line)

            code = await process.wait()
        finally:
            if log is not None:
                log.close()

        if code != 0 and not self.stopping:
            self.emit(node, f"{BOLD}{RED}exited with code {code}{RESET}")
        else:
            self.emit(node, f"{BOLD}stopped{RESET}")
        return code

    def terminate(self):
        """Ask every live node to stop."""
        self.stopping = True
        for name, process in self.running.items():
            if process.returncode is not None:
                continue
            print(f"{DIM}Terminating {name}{RESET}")
            try:
                process.terminate()
            except ProcessLookupError:
                pass


# Flag name -> RunConfig field, forwarded only when given
FORWARDED_FLAGS = {
    'workers': 'worker_num',
    'iterations': 'iter_num',
    'port': 'port',
    'output': 'output_path',
}


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Launch a Concord coordinator and its workers")
    parser.add_argument('--workers', type=int, default=None, help='Number of worker nodes (default: from config, else 2)')
    parser.add_argument('--iterations', type=int, default=None, help='Maximum iterations (default: from config, else 10)')
    parser.add_argument('--port', type=int, default=None, help='Coordinator gRPC port (default: from config, else 50051)')
    parser.add_argument('--output', type=str, default=None, help='Iteration log path')
    parser.add_argument('--config', type=str, default=None, help='JSON run configuration shared by all nodes')
    parser.add_argument('--logs-dir', type=Path, default=None, help='Directory for per-node log files')
    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> RunConfig:
    """The configuration every node will load: file values, then explicit flags."""
    overrides = {field: getattr(args, flag) for flag, field in FORWARDED_FLAGS.items()}
    return load_config(args.config, **overrides)


def shared_flags(args: argparse.Namespace) -> List[str]:
    """Flags every node receives so that all agree on the run."""
    flags = []
    for flag in FORWARDED_FLAGS:
        value = getattr(args, flag)
        if value is not None:
            flags += [f'--{flag}', str(value)]
    if args.config:
        flags += ['--config', args.config]
    return flags


async def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    try:
        config = resolve_config(args)
    except ConcordError as e:
        print(f"{RED}Error: {e}{RESET}", file=sys.stderr)
        return 1

    launcher = NodeLauncher(PROJECT_ROOT, logs_dir=args.logs_dir)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, launcher.terminate)

    nodes = build_nodes(config.worker_num, shared_flags(args))
    print(
        f"{BOLD}Concord run: {config.worker_num} workers, {config.iter_num} iterations, "
        f"port {config.port}{RESET}"
    )

    try:
        codes = await asyncio.gather(*[launcher.launch(node) for node in nodes])
    finally:
        launcher.terminate()

    failed = [node.name for node, code in zip(nodes, codes) if code != 0]
    if failed:
        print(f"{BOLD}{RED}Failed nodes: {', '.join(failed)}{RESET}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
