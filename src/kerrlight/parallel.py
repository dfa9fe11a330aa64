"""Data-parallel helpers over pixel chunks.

Work is split into contiguous slices of at most ``chunk_size`` pixels and
run on a ThreadPoolExecutor. Each chunk writes only to its own slice of
the output arrays, so results do not depend on scheduling order.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

logger = logging.getLogger(__name__)

__all__ = ['chunk_slices', 'run_chunks']


def chunk_slices(num_items: int, chunk_size: int) -> list:
    """Contiguous slices covering ``range(num_items)``."""
    return [slice(start, min(start + chunk_size, num_items))
            for start in range(0, num_items, chunk_size)]


def run_chunks(func, num_items: int, chunk_size: int, num_threads: int) -> list:
    """Call ``func(chunk_slice)`` for every chunk and return results in chunk order.

    With a single thread the chunks run inline, which keeps tracebacks
    simple when debugging.
    """
    slices = chunk_slices(num_items, chunk_size)
    if num_threads <= 1 or len(slices) <= 1:
        return [func(sl) for sl in slices]
    logger.debug("Running %d chunks on %d threads", len(slices), num_threads)
    with ThreadPoolExecutor(max_workers=num_threads) as executor:
        return list(executor.map(func, slices))
