"""Paginated listing over the blocking retry loop and the completion queue."""

from __future__ import annotations

import logging as py_logging
import time
from collections.abc import Callable
from typing import TypeVar

from rpcretry.backoff import ExponentialBackoffPolicy
from rpcretry.completion_queue import CompletionQueue
from rpcretry.future import ResultFuture
from rpcretry.poll import start_async_retry
from rpcretry.retry import RetryPolicy, retry_loop

T = TypeVar("T")

logger = py_logging.getLogger(__name__)

Page = tuple[list[T], str]


def list_all_pages(
    fetch_page: Callable[[str], Page[T]],
    *,
    retry_policy: RetryPolicy,
    backoff_policy: ExponentialBackoffPolicy,
    sleep: Callable[[float], None] = time.sleep,
    name: str = "",
) -> list[T]:
    """Fetch every page and return the concatenated items.

    ``fetch_page(page_token)`` returns ``(items, next_page_token)``; an empty
    next token ends the listing. One clone of each policy covers the whole
    listing, so the retry budget is shared across pages. Any terminal error
    aborts the listing and the pages gathered so far are dropped.
    """
    policy = retry_policy.clone()
    backoff = backoff_policy.clone()
    items: list[T] = []
    page_token = ""
    pages = 0
    while True:
        token = page_token
        page_items, page_token = retry_loop(
            lambda: fetch_page(token),
            retry_policy=policy,
            backoff_policy=backoff,
            idempotent=True,
            sleep=sleep,
            name=name,
        )
        pages += 1
        items.extend(page_items)
        if not page_token:
            break
    logger.debug("rpc-list op=%s pages=%s items=%s", name or "-", pages, len(items))
    return items


def start_list_all_pages(
    cq: CompletionQueue,
    fetch_page: Callable[[str], Page[T]],
    *,
    retry_policy: RetryPolicy,
    backoff_policy: ExponentialBackoffPolicy,
    name: str = "",
) -> ResultFuture[list[T]]:
    """Asynchronous ``list_all_pages``: one async retry per page, chained on ``cq``.

    Each page gets its own clone of the policies. The first terminal error
    resolves the returned future and the pages gathered so far are dropped.
    """
    listing: ResultFuture[list[T]] = ResultFuture()
    items: list[T] = []

    def _request(page_token: str) -> None:
        page = start_async_retry(
            cq,
            lambda: fetch_page(page_token),
            retry_policy=retry_policy,
            backoff_policy=backoff_policy,
            name=name,
        )
        page.add_done_callback(_on_page)

    def _on_page(page: ResultFuture[Page[T]]) -> None:
        error = page.exception()
        if error is not None:
            listing.set_exception(error)
            return
        page_items, next_token = page.result()
        items.extend(page_items)
        if next_token:
            _request(next_token)
            return
        logger.debug("rpc-list-async op=%s items=%s", name or "-", len(items))
        listing.set_result(items)

    _request("")
    return listing
