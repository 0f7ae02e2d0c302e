"""
Group membership and role assignment.

A group is formed once, before the first collective operation, and never
changes during a run. Every node receives an explicit Role at startup; no
node infers its role at runtime.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging

from core.exceptions import ConfigurationError, UnknownMemberError

logger = logging.getLogger(__name__)


COORDINATOR_ID = "Coordinator"
WORKER_ID_PREFIX = "Worker_"
DEFAULT_GROUP_ID = "ml-group"


def worker_id(index: int) -> str:
    """Stable identifier of the worker with the given index."""
    return f"{WORKER_ID_PREFIX}{index}"


@dataclass(frozen=True)
class Role:
    """
    Role of a single node: the coordinator, or a worker with an index.

    Use Role.coordinator() and Role.worker(index) to build one.
    """

    kind: str
    index: Optional[int] = None

    @classmethod
    def coordinator(cls) -> 'Role':
        return cls(kind="coordinator")

    @classmethod
    def worker(cls, index: int) -> 'Role':
        return cls(kind="worker", index=index)

    @property
    def is_coordinator(self) -> bool:
        return self.kind == "coordinator"

    @property
    def member_id(self) -> str:
        if self.is_coordinator:
            return COORDINATOR_ID
        return worker_id(self.index)


@dataclass(frozen=True)
class GroupMembership:
    """
    Fixed set of participants sharing one collective channel.

    Attributes:
        group_id: Name of the communication group
        coordinator_id: Identifier of the coordinator (reduce receiver, broadcast sender)
        worker_ids: Worker identifiers in index order
        vector_length: Length every broadcast and reduced vector must have
    """

    group_id: str
    coordinator_id: str
    worker_ids: Tuple[str, ...]
    vector_length: int

    @property
    def members(self) -> Tuple[str, ...]:
        """All member ids, coordinator first, then workers in index order."""
        return (self.coordinator_id,) + self.worker_ids

    @property
    def worker_num(self) -> int:
        return len(self.worker_ids)

    def __contains__(self, member_id: str) -> bool:
        return member_id in self.members

    def require_member(self, member_id: str):
        """Raise UnknownMemberError if member_id is not part of the group."""
        if member_id not in self.members:
            raise UnknownMemberError(
                f"'{member_id}' is not a member of group '{self.group_id}'"
            )

    def roles(self) -> List[Role]:
        """Roles handed out at formation time, coordinator first."""
        return [Role.coordinator()] + [
            Role.worker(i) for i in range(self.worker_num)
        ]


def form_group(
    worker_num: int,
    vector_length: int,
    group_id: str = DEFAULT_GROUP_ID,
) -> GroupMembership:
    """
    Form a group of one coordinator and worker_num workers.

    Worker indices are assigned deterministically as 0..worker_num-1.

    Args:
        worker_num: Number of workers (> 0)
        vector_length: Length of the weight vector (> 0)
        group_id: Name of the communication group

    Returns:
        Immutable GroupMembership

    Raises:
        ConfigurationError: If worker_num or vector_length is not positive
    """
    if worker_num <= 0:
        raise ConfigurationError(f"worker_num must be positive, got {worker_num}")
    if vector_length <= 0:
        raise ConfigurationError(f"vector_length must be positive, got {vector_length}")

    membership = GroupMembership(
        group_id=group_id,
        coordinator_id=COORDINATOR_ID,
        worker_ids=tuple(worker_id(i) for i in range(worker_num)),
        vector_length=vector_length,
    )

    logger.info(
        f"Formed group '{group_id}': coordinator={COORDINATOR_ID}, "
        f"workers={worker_num}, vector_length={vector_length}"
    )

    return membership
