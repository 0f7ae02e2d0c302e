"""
gRPC server exposing a collective hub to remote members.

The coordinator node runs this server around an InMemoryCollectiveChannel.
Remote workers call Broadcast, Receive and Reduce; each handler joins the
hub round on the caller's behalf and returns when the round completes, so
the blocking semantics are exactly those of the in-memory channel.
"""

import logging
from typing import Optional
import grpc
from google.protobuf import struct_pb2

from communication.collectives import InMemoryCollectiveChannel
from communication.serialization import (
    build_response,
    read_field,
    read_tensor,
)
from core.exceptions import (
    CollectiveError,
    EmptyInputError,
    GroupClosedError,
    LengthMismatchError,
    MemberTimeoutError,
    ProtocolMismatchError,
    UnknownMemberError,
)


logger = logging.getLogger(__name__)


SERVICE_NAME = "concord.Collective"

ERROR_STATUS = {
    LengthMismatchError: grpc.StatusCode.INVALID_ARGUMENT,
    EmptyInputError: grpc.StatusCode.INVALID_ARGUMENT,
    ProtocolMismatchError: grpc.StatusCode.FAILED_PRECONDITION,
    UnknownMemberError: grpc.StatusCode.NOT_FOUND,
    GroupClosedError: grpc.StatusCode.ABORTED,
    MemberTimeoutError: grpc.StatusCode.DEADLINE_EXCEEDED,
}


def status_for(error: CollectiveError) -> grpc.StatusCode:
    """gRPC status code carrying a collective error."""
    for error_type, code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return code
    return grpc.StatusCode.INTERNAL


class CollectiveServicer:
    """
    Handlers for the Collective service.

    Each handler takes and returns a google.protobuf.Struct.
    """

    def __init__(self, hub: InMemoryCollectiveChannel):
        """
        Args:
            hub: Channel holding the authoritative round state
        """
        self.hub = hub

    async def Broadcast(
        self, request: struct_pb2.Struct, context: grpc.aio.ServicerContext
    ) -> struct_pb2.Struct:
        """Publish a remote member's broadcast."""
        try:
            await self.hub.broadcast(
                request["group_id"], request["member_id"], read_tensor(request)
            )
        except CollectiveError as e:
            await self._abort(context, "Broadcast", request, e)
        return build_response()

    async def Receive(
        self, request: struct_pb2.Struct, context: grpc.aio.ServicerContext
    ) -> struct_pb2.Struct:
        """Wait for the next broadcast on the group and return it."""
        try:
            value = await self.hub.receive(request["group_id"], request["member_id"])
        except CollectiveError as e:
            await self._abort(context, "Receive", request, e)
        return build_response(value)

    async def Reduce(
        self, request: struct_pb2.Struct, context: grpc.aio.ServicerContext
    ) -> struct_pb2.Struct:
        """Contribute to a reduce round; the receiver gets the combined value."""
        try:
            result = await self.hub.reduce(
                request["group_id"],
                read_field(request, "root_id"),
                request["member_id"],
                read_tensor(request),
                read_field(request, "combine") or "sum",
            )
        except CollectiveError as e:
            await self._abort(context, "Reduce", request, e)
        except ValueError as e:
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, str(e))
        return build_response(result)

    async def _abort(self, context, method: str, request, error: CollectiveError):
        logger.warning(
            f"{method} from {read_field(request, 'member_id')} failed: "
            f"{type(error).__name__}: {error}"
        )
        await context.abort(status_for(error), f"{type(error).__name__}: {error}")

    def rpc_handler(self) -> grpc.GenericRpcHandler:
        """Generic handler registering every method with Struct codecs."""
        def unary(fn):
            return grpc.unary_unary_rpc_method_handler(
                fn,
                request_deserializer=struct_pb2.Struct.FromString,
                response_serializer=struct_pb2.Struct.SerializeToString,
            )

        return grpc.method_handlers_generic_handler(
            SERVICE_NAME,
            {
                "Broadcast": unary(self.Broadcast),
                "Receive": unary(self.Receive),
                "Reduce": unary(self.Reduce),
            },
        )


class CollectiveGRPCServer:
    """
    Manages the gRPC server lifecycle for a collective hub.
    """

    def __init__(
        self,
        hub: InMemoryCollectiveChannel,
        host: str = "0.0.0.0",
        port: int = 50051,
    ):
        """
        Args:
            hub: Channel whose rounds remote members join
            host: Host to bind to
            port: Port to listen on (0 picks a free port)
        """
        self.hub = hub
        self.host = host
        self.port = port
        self.server: Optional[grpc.aio.Server] = None
        self.servicer = CollectiveServicer(hub)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def start(self):
        """Start the gRPC server."""
        options = [
            ('grpc.max_send_message_length', 100 * 1024 * 1024),  # 100MB
            ('grpc.max_receive_message_length', 100 * 1024 * 1024),  # 100MB
        ]
        self.server = grpc.aio.server(options=options)
        self.server.add_generic_rpc_handlers((self.servicer.rpc_handler(),))

        self.port = self.server.add_insecure_port(f"{self.host}:{self.port}")

        await self.server.start()
        logger.info(f"Collective gRPC server started on {self.address}")

    async def stop(self, grace: Optional[float] = 5.0):
        """Stop the gRPC server, failing calls still waiting on the hub."""
        if self.server:
            logger.info("Stopping collective gRPC server")
            await self.hub.close()
            await self.server.stop(grace)
            logger.info("Collective gRPC server stopped")

    async def wait_for_termination(self):
        """Wait for the server to terminate."""
        if self.server:
            await self.server.wait_for_termination()
