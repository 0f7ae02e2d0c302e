"""
Tensor serialization utilities for gRPC communication.

Collective requests and responses are google.protobuf.Struct messages, so
the transport needs no generated stubs. Tensors travel as
{"shape": [...], "data": [...]} with float64 numbers, which keeps NaN and
infinities intact.
"""

from typing import Any, Dict, Optional
import numpy as np
import torch
from google.protobuf import struct_pb2


def tensor_to_value(tensor: torch.Tensor) -> Dict[str, Any]:
    """Convert a tensor to a Struct-compatible dictionary."""
    array = tensor.detach().cpu().numpy().astype(np.float64)
    return {
        "shape": [float(d) for d in array.shape],
        "data": array.reshape(-1).tolist(),
    }


def value_to_tensor(value: struct_pb2.Struct) -> torch.Tensor:
    """Convert a {"shape", "data"} Struct back to a float64 tensor."""
    shape = tuple(int(d) for d in value["shape"])
    data = np.asarray(list(value["data"]), dtype=np.float64)
    return torch.from_numpy(data.reshape(shape))


def build_request(
    group_id: str,
    member_id: str,
    root_id: Optional[str] = None,
    tensor: Optional[torch.Tensor] = None,
    combine: Optional[str] = None,
) -> struct_pb2.Struct:
    """
    Build a collective request message.

    Args:
        group_id: Target group
        member_id: Calling member
        root_id: Broadcast sender or reduce receiver
        tensor: Payload, omitted for receive calls and empty contributions
        combine: Registered combine function name (reduce only)
    """
    request = struct_pb2.Struct()
    request.update({"group_id": group_id, "member_id": member_id})
    if root_id is not None:
        request["root_id"] = root_id
    if combine is not None:
        request["combine"] = combine
    if tensor is not None:
        request["tensor"] = tensor_to_value(tensor)
    return request


def build_response(tensor: Optional[torch.Tensor] = None) -> struct_pb2.Struct:
    """Build a response carrying an optional tensor."""
    response = struct_pb2.Struct()
    if tensor is not None:
        response["tensor"] = tensor_to_value(tensor)
    return response


def read_tensor(message: struct_pb2.Struct) -> Optional[torch.Tensor]:
    """Extract the optional tensor field of a request or response."""
    if "tensor" not in message:
        return None
    return value_to_tensor(message["tensor"])


def read_field(message: struct_pb2.Struct, key: str) -> Optional[str]:
    if key not in message:
        return None
    return message[key]
