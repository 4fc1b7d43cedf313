"""Chunked, failure-isolating batch runner backed by a bounded thread pool."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Sequence

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


def error_placeholder(exc: Exception, item: Any) -> dict[str, Any]:
    return {"Error": f"{type(exc).__name__}: {exc}", "Item": item}


def is_error_placeholder(value: Any) -> bool:
    return isinstance(value, dict) and set(value) == {"Error", "Item"}


class BatchRunner:
    """Applies a function to items in contiguous batches, preserving order.

    Items within a batch run concurrently on at most ``max_workers`` threads
    (defaults to the batch size). A failing item is logged at ERROR and,
    with ``continue_on_error``, replaced by ``{"Error", "Item"}``; otherwise
    the exception propagates once the batch finishes.
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        continue_on_error: bool = True,
        max_workers: int | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size
        self.continue_on_error = continue_on_error
        self.max_workers = max_workers if max_workers and max_workers > 0 else batch_size
        self.batches_run = 0
        self.failures = 0

    def batches(self, items: Sequence[Any]) -> list[Sequence[Any]]:
        return [items[i:i + self.batch_size] for i in range(0, len(items), self.batch_size)]

    def run(
        self,
        items: Sequence[Any],
        fn: Callable[[Any], Any],
        should_stop: Callable[[], bool] | None = None,
    ) -> list[Any]:
        """Process *items* and return results in input order.

        *should_stop* is checked before each batch; once it returns True the
        remaining items are left out of the result, so callers can tell
        which items were never attempted.
        """
        items = list(items)
        results: list[Any] = []
        if not items:
            return results

        workers = max(1, min(self.max_workers, self.batch_size))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for batch in self.batches(items):
                if should_stop is not None and should_stop():
                    logger.warning(
                        "Stopping batch run early: %d of %d items processed",
                        len(results), len(items),
                    )
                    break
                futures = [pool.submit(fn, item) for item in batch]
                first_error: Exception | None = None
                for item, future in zip(batch, futures):
                    try:
                        results.append(future.result())
                    except Exception as exc:
                        self.failures += 1
                        logger.error("Failed to process item %r: %s", item, exc)
                        if not self.continue_on_error:
                            first_error = first_error or exc
                            continue
                        results.append(error_placeholder(exc, item))
                self.batches_run += 1
                if first_error is not None:
                    raise first_error

        return results
