"""
Vector operations used to combine reduce contributions.

All functions are pure: inputs are never modified and a fresh tensor is
returned. Vectors are 1-D float tensors; error scalars travel as 0-dim
tensors and go through the same code paths.
"""

from typing import Callable, Dict, Sequence, Union
import torch

from core.exceptions import EmptyInputError, LengthMismatchError


CombineFn = Callable[[Sequence[torch.Tensor]], torch.Tensor]


def _stack(vectors: Sequence[torch.Tensor]) -> torch.Tensor:
    """Stack equally shaped vectors, raising on empty or ragged input."""
    if len(vectors) == 0:
        raise EmptyInputError("Cannot combine an empty set of vectors")

    tensors = [torch.as_tensor(v, dtype=torch.float64) for v in vectors]
    shape = tensors[0].shape
    for i, tensor in enumerate(tensors[1:], start=1):
        if tensor.shape != shape:
            raise LengthMismatchError(
                f"Vector {i} has shape {tuple(tensor.shape)}, "
                f"expected {tuple(shape)}"
            )

    return torch.stack(tensors)


def vector_sum(vectors: Sequence[torch.Tensor]) -> torch.Tensor:
    """
    Elementwise sum of one or more vectors of the same length.

    Args:
        vectors: Vectors to add

    Returns:
        Vector whose k-th element is the sum of every input's k-th element

    Raises:
        EmptyInputError: If no vectors are given
        LengthMismatchError: If the vectors differ in length
    """
    return _stack(vectors).sum(dim=0)


def vector_average(vectors: Sequence[torch.Tensor]) -> torch.Tensor:
    """
    Elementwise average: vector_sum divided by the number of vectors.

    Raises:
        EmptyInputError: If no vectors are given
        LengthMismatchError: If the vectors differ in length
    """
    return vector_sum(vectors) / len(vectors)


def has_nan(vector: torch.Tensor) -> bool:
    """Return True if any element of the vector is NaN."""
    return bool(torch.isnan(torch.as_tensor(vector)).any())


# Combine functions addressable by name, so they can cross process boundaries
COMBINE_FUNCTIONS: Dict[str, CombineFn] = {
    "sum": vector_sum,
    "average": vector_average,
}


def resolve_combine(combine: Union[str, CombineFn]) -> CombineFn:
    """
    Resolve a combine function given by name or as a callable.

    Raises:
        ValueError: If the name is not registered
    """
    if callable(combine):
        return combine

    try:
        return COMBINE_FUNCTIONS[combine]
    except KeyError:
        raise ValueError(f"Unknown combine function: {combine}") from None


def combine_name(combine: Union[str, CombineFn]) -> str:
    """
    Registered name of a combine function.

    Raises:
        ValueError: If the callable is not registered
    """
    if isinstance(combine, str):
        resolve_combine(combine)
        return combine

    for name, fn in COMBINE_FUNCTIONS.items():
        if fn is combine:
            return name

    raise ValueError(f"Combine function {combine!r} is not registered")
