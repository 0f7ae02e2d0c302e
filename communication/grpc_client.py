"""
gRPC client side of the collective channel.

Remote members use GrpcCollectiveChannel exactly like the in-memory channel;
each call is a unary RPC to the hub that returns once the round completes.
"""

import logging
from typing import Optional, Union
import grpc
import torch
from google.protobuf import struct_pb2

from communication.collectives import CollectiveChannel
from communication.grpc_server import ERROR_STATUS, SERVICE_NAME
from communication.serialization import build_request, read_tensor
from core.exceptions import CollectiveError, MemberTimeoutError
from core.vector_ops import CombineFn, combine_name


logger = logging.getLogger(__name__)


def error_from_rpc(error: grpc.aio.AioRpcError) -> CollectiveError:
    """Map an RPC failure back to the collective error it carries."""
    details = error.details() or ""
    for error_type, code in ERROR_STATUS.items():
        if error.code() == code and details.startswith(f"{error_type.__name__}:"):
            return error_type(details.split(":", 1)[1].strip())

    if error.code() == grpc.StatusCode.DEADLINE_EXCEEDED:
        return MemberTimeoutError(f"Collective call timed out: {details}")

    return CollectiveError(f"RPC failed with {error.code().name}: {details}")


class GrpcCollectiveChannel(CollectiveChannel):
    """
    Collective channel backed by a remote hub.
    """

    def __init__(self, address: str, timeout: Optional[float] = None):
        """
        Args:
            address: Hub address in format "host:port"
            timeout: Per-call deadline in seconds (None waits forever)
        """
        self.address = address
        self.timeout = timeout

        options = [
            ('grpc.max_send_message_length', 100 * 1024 * 1024),  # 100MB
            ('grpc.max_receive_message_length', 100 * 1024 * 1024),  # 100MB
        ]
        self.channel = grpc.aio.insecure_channel(address, options=options)

        self._methods = {
            name: self.channel.unary_unary(
                f"/{SERVICE_NAME}/{name}",
                request_serializer=struct_pb2.Struct.SerializeToString,
                response_deserializer=struct_pb2.Struct.FromString,
            )
            for name in ("Broadcast", "Receive", "Reduce")
        }
        logger.info(f"Created collective channel to {address}")

    async def _call(self, method: str, request: struct_pb2.Struct) -> struct_pb2.Struct:
        try:
            # wait_for_ready lets members start before the hub is listening
            return await self._methods[method](
                request, timeout=self.timeout, wait_for_ready=True
            )
        except grpc.aio.AioRpcError as e:
            error = error_from_rpc(e)
            logger.error(f"{method} to {self.address} failed: {error}")
            raise error from e

    async def broadcast(self, group_id: str, sender_id: str, value: torch.Tensor) -> None:
        request = build_request(group_id, sender_id, root_id=sender_id, tensor=value)
        await self._call("Broadcast", request)

    async def receive(self, group_id: str, member_id: str) -> torch.Tensor:
        response = await self._call("Receive", build_request(group_id, member_id))
        return read_tensor(response)

    async def reduce(
        self,
        group_id: str,
        receiver_id: str,
        member_id: str,
        contribution: Optional[torch.Tensor],
        combine_fn: Union[str, CombineFn],
    ) -> Optional[torch.Tensor]:
        request = build_request(
            group_id,
            member_id,
            root_id=receiver_id,
            tensor=contribution,
            combine=combine_name(combine_fn),
        )
        response = await self._call("Reduce", request)
        return read_tensor(response)

    async def close(self):
        await self.channel.close()
        logger.debug(f"Closed collective channel to {self.address}")
