"""CUDA OOM retry logic for embedders.

Retries an encode call with a smaller batch when CUDA runs out of memory.
"""

import logging
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_cuda_oom_error(error: Exception) -> bool:
    """Check if an error is a CUDA out of memory error."""
    error_msg = str(error).lower()
    return "cuda out of memory" in error_msg or "out of memory" in error_msg


def _release_cuda_cache() -> None:
    try:
        import torch
    except ImportError:
        return
    try:
        torch.cuda.empty_cache()
    except RuntimeError as e:
        logger.debug("Could not release CUDA cache: %s", e)


def embed_with_oom_retry(
    encode_fn: Callable[[int], T],
    batch_size: int,
    min_batch_size: int = 1,
) -> T:
    """Run ``encode_fn(batch_size)``, halving the batch on each CUDA OOM.

    Args:
        encode_fn: Function that takes a batch size and returns embeddings
        batch_size: Initial batch size to try
        min_batch_size: Smallest batch size before giving up

    Returns:
        Result from encode_fn

    Raises:
        Exception: The OOM error itself once min_batch_size is reached, or any
            non-OOM error immediately.
    """
    current = batch_size
    while True:
        try:
            return encode_fn(current)
        except Exception as e:
            if not is_cuda_oom_error(e):
                raise
            if current <= min_batch_size:
                logger.error(
                    "CUDA out of memory at minimum batch size (%d). "
                    "Use a smaller model or run on CPU.",
                    min_batch_size,
                )
                raise
            _release_cuda_cache()
            reduced = max(current // 2, min_batch_size)
            logger.warning(
                "CUDA out of memory. Batch size %d -> %d, retrying.", current, reduced
            )
            current = reduced
