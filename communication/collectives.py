"""
Collective communication operations for the optimization loop.

Provides the broadcast and reduce primitives every participant uses. Both
calls block the caller until the whole round is complete, which makes each
collective a barrier: no member leaves a round before every member of the
group has joined it.

Rounds are matched by call order. The k-th collective call a member makes
on a group joins round k of that group, so all members observe operations
on a group in the same order.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional, Set, Union
import torch

from core.exceptions import (
    EmptyInputError,
    GroupClosedError,
    LengthMismatchError,
    MemberTimeoutError,
    ProtocolMismatchError,
    UnknownMemberError,
)
from core.membership import GroupMembership
from core.vector_ops import CombineFn, resolve_combine


logger = logging.getLogger(__name__)


BROADCAST = "broadcast"
REDUCE = "reduce"


class CollectiveChannel(ABC):
    """
    Broadcast and reduce over fixed, named groups of participants.

    Implementations differ only in transport; the matching and blocking
    semantics are the same for all of them.
    """

    @abstractmethod
    async def broadcast(self, group_id: str, sender_id: str, value: torch.Tensor) -> None:
        """
        Publish value to every other member of the group.

        Blocks until every member has received it.
        """

    @abstractmethod
    async def receive(self, group_id: str, member_id: str) -> torch.Tensor:
        """Return the value of the next broadcast on the group."""

    @abstractmethod
    async def reduce(
        self,
        group_id: str,
        receiver_id: str,
        member_id: str,
        contribution: Optional[torch.Tensor],
        combine_fn: Union[str, CombineFn],
    ) -> Optional[torch.Tensor]:
        """
        Contribute to a reduce round.

        Every member calls reduce once per round. The receiver gets
        combine_fn applied to all contributions; everyone else gets None
        once the round is complete. A None contribution joins the barrier
        without being combined.
        """

    async def close(self):
        """Release transport resources. Pending calls fail with GroupClosedError."""


class _Round:
    """State of one matched collective operation on a group."""

    def __init__(self, seq: int, kind: str, root_id: Optional[str], members: tuple):
        self.seq = seq
        self.kind = kind
        self.root_id = root_id
        self.members = members
        self.arrived: Set[str] = set()
        self.departed = 0
        self.contributions: Dict[str, Optional[torch.Tensor]] = {}
        self.combine_fn: Optional[CombineFn] = None
        self.value: Optional[torch.Tensor] = None
        self.error: Optional[Exception] = None
        self.published = asyncio.Event()
        self.done = asyncio.Event()

    @property
    def complete(self) -> bool:
        return len(self.arrived) == len(self.members)

    def missing(self) -> Set[str]:
        return set(self.members) - self.arrived

    def fail(self, error: Exception):
        """Fail the round for every member still waiting on it."""
        if self.done.is_set() and self.error is None:
            return
        if self.error is None:
            self.error = error
        self.published.set()
        self.done.set()


class _GroupState:
    """Per-group round bookkeeping."""

    def __init__(self, membership: GroupMembership):
        self.membership = membership
        self.next_seq: Dict[str, int] = {m: 0 for m in membership.members}
        self.rounds: Dict[int, _Round] = {}
        self.closed = False


def _as_tensor(value) -> torch.Tensor:
    return torch.as_tensor(value, dtype=torch.float64).detach().clone()


class InMemoryCollectiveChannel(CollectiveChannel):
    """
    Collective channel for participants running in one event loop.

    Used directly by single-process simulations and tests, and as the hub
    engine behind the gRPC transport. Contributions are combined in
    membership order (coordinator first, then workers by index), so the
    aggregate never depends on the order in which members arrive.
    """

    def __init__(
        self,
        memberships: Iterable[GroupMembership] = (),
        round_timeout: Optional[float] = None,
    ):
        """
        Args:
            memberships: Groups to register up front
            round_timeout: Seconds a member waits for a round to complete
                before MemberTimeoutError (None waits forever)
        """
        self.round_timeout = round_timeout
        self._groups: Dict[str, _GroupState] = {}

        for membership in memberships:
            self.register_group(membership)

    def register_group(self, membership: GroupMembership):
        """
        Register a group. Membership is immutable once registered.

        Raises:
            ValueError: If a group with the same id already exists
        """
        if membership.group_id in self._groups:
            raise ValueError(f"Group '{membership.group_id}' is already registered")

        self._groups[membership.group_id] = _GroupState(membership)
        logger.info(
            f"Registered group '{membership.group_id}' with "
            f"{len(membership.members)} members"
        )

    def membership(self, group_id: str) -> GroupMembership:
        return self._state(group_id).membership

    def _state(self, group_id: str) -> _GroupState:
        state = self._groups.get(group_id)
        if state is None:
            raise UnknownMemberError(f"Unknown group '{group_id}'")
        return state

    def _enter(self, group_id: str, member_id: str) -> _GroupState:
        state = self._state(group_id)
        if state.closed:
            raise GroupClosedError(f"Group '{group_id}' is closed")
        state.membership.require_member(member_id)
        return state

    def _join(self, state: _GroupState, member_id: str, kind: str, root_id: Optional[str]) -> _Round:
        seq = state.next_seq[member_id]
        state.next_seq[member_id] = seq + 1

        rnd = state.rounds.get(seq)
        if rnd is None:
            rnd = _Round(seq, kind, root_id, state.membership.members)
            state.rounds[seq] = rnd
            return rnd

        if rnd.kind != kind or (
            root_id is not None and rnd.root_id is not None and rnd.root_id != root_id
        ):
            error = ProtocolMismatchError(
                f"Round {seq} of group '{state.membership.group_id}': {member_id} "
                f"called {kind} (root={root_id}) but the round is "
                f"{rnd.kind} (root={rnd.root_id})"
            )
            rnd.fail(error)
            self._leave(state, rnd)
            raise error

        if rnd.root_id is None:
            rnd.root_id = root_id
        return rnd

    def _leave(self, state: _GroupState, rnd: _Round):
        rnd.departed += 1
        if rnd.departed == len(rnd.members):
            state.rounds.pop(rnd.seq, None)

    def _prepare(self, state: _GroupState, value) -> torch.Tensor:
        if value is None:
            raise EmptyInputError(
                f"No value supplied to a broadcast on group '{state.membership.group_id}'"
            )
        value = _as_tensor(value)
        self._check_length(state, value)
        return value

    def _check_length(self, state: _GroupState, value: torch.Tensor):
        expected = state.membership.vector_length
        if value.dim() == 0:
            return
        if value.dim() != 1 or value.numel() != expected:
            raise LengthMismatchError(
                f"Group '{state.membership.group_id}' exchanges vectors of length "
                f"{expected}, got shape {tuple(value.shape)}"
            )

    def _arrive(self, rnd: _Round, member_id: str):
        rnd.arrived.add(member_id)
        if not rnd.complete or rnd.done.is_set():
            return

        if rnd.kind == REDUCE:
            contributions = [
                rnd.contributions[m]
                for m in rnd.members
                if rnd.contributions.get(m) is not None
            ]
            try:
                rnd.value = rnd.combine_fn(contributions)
            except Exception as e:
                rnd.fail(e)
                return

        rnd.done.set()

    async def _wait(self, state: _GroupState, rnd: _Round, event: asyncio.Event):
        if rnd.error is None:
            try:
                if self.round_timeout is None:
                    await event.wait()
                else:
                    await asyncio.wait_for(event.wait(), timeout=self.round_timeout)
            except asyncio.TimeoutError:
                missing = rnd.missing()
                error = MemberTimeoutError(
                    f"Round {rnd.seq} ({rnd.kind}) of group "
                    f"'{state.membership.group_id}' timed out after "
                    f"{self.round_timeout}s waiting for {sorted(missing)}",
                    missing_members=missing,
                )
                logger.warning(str(error))
                rnd.fail(error)

        if rnd.error is not None:
            raise rnd.error

    async def broadcast(self, group_id: str, sender_id: str, value: torch.Tensor) -> None:
        state = self._enter(group_id, sender_id)
        rnd = self._join(state, sender_id, BROADCAST, sender_id)
        try:
            try:
                value = self._prepare(state, value)
            except Exception as e:
                rnd.fail(e)
                raise

            rnd.value = value
            rnd.published.set()
            self._arrive(rnd, sender_id)

            logger.debug(f"{sender_id} broadcast round {rnd.seq} on '{group_id}'")
            await self._wait(state, rnd, rnd.done)
        finally:
            self._leave(state, rnd)

    async def receive(self, group_id: str, member_id: str) -> torch.Tensor:
        state = self._enter(group_id, member_id)
        rnd = self._join(state, member_id, BROADCAST, None)
        try:
            await self._wait(state, rnd, rnd.published)

            if rnd.root_id == member_id:
                error = ProtocolMismatchError(
                    f"{member_id} cannot receive its own broadcast (round {rnd.seq})"
                )
                rnd.fail(error)
                raise error

            value = rnd.value.clone()
            self._arrive(rnd, member_id)
            await self._wait(state, rnd, rnd.done)

            logger.debug(f"{member_id} received round {rnd.seq} on '{group_id}'")
            return value
        finally:
            self._leave(state, rnd)

    async def reduce(
        self,
        group_id: str,
        receiver_id: str,
        member_id: str,
        contribution: Optional[torch.Tensor],
        combine_fn: Union[str, CombineFn],
    ) -> Optional[torch.Tensor]:
        state = self._enter(group_id, member_id)
        state.membership.require_member(receiver_id)
        combine = resolve_combine(combine_fn) if member_id == receiver_id else None
        rnd = self._join(state, member_id, REDUCE, receiver_id)
        try:
            if contribution is not None:
                try:
                    contribution = self._prepare(state, contribution)
                except Exception as e:
                    rnd.fail(e)
                    raise

            rnd.contributions[member_id] = contribution
            if combine is not None:
                rnd.combine_fn = combine

            self._arrive(rnd, member_id)
            await self._wait(state, rnd, rnd.done)

            logger.debug(f"{member_id} completed reduce round {rnd.seq} on '{group_id}'")

            if member_id == receiver_id:
                return rnd.value.clone()
            return None
        finally:
            self._leave(state, rnd)

    async def close(self):
        for group_id, state in self._groups.items():
            if state.closed:
                continue
            state.closed = True
            for rnd in list(state.rounds.values()):
                rnd.fail(GroupClosedError(f"Group '{group_id}' was closed"))
            logger.info(f"Closed group '{group_id}'")
