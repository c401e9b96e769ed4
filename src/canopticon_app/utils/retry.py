#!filepath: src/canopticon_app/utils/retry.py
from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


def run_with_retry(
    fn: Callable[[int], T],
    *,
    attempts: int = 2,
    retry_on: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    logger: Optional[logging.Logger] = None,
) -> T:
    """Run `fn` up to `attempts` times, without backoff.

    `fn` receives the 1-based attempt number so callers can tighten their
    request on the second try.

    Args:
        fn: Callable taking the attempt number.
        attempts: Total attempts, including the first.
        retry_on: Exception types that trigger another attempt.
        on_retry: Callback invoked before the next attempt.
        logger: If given and on_retry is None, emits a warning per retry.

    Returns:
        The result of `fn`.

    Raises:
        Exception: The last exception once attempts are exhausted.
    """
    total = max(1, int(attempts))

    if on_retry is None and logger is not None:

        def _default_on_retry(attempt: int, exc: Exception) -> None:
            logger.warning(f"Retrying, attempt={attempt + 1}/{total}, err={exc}")

        on_retry = _default_on_retry

    attempt = 1
    while True:
        try:
            return fn(attempt)
        except retry_on as exc:
            if attempt >= total:
                raise
            if on_retry is not None:
                on_retry(attempt, exc)
            attempt += 1
