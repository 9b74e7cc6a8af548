from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from .errors import PageLimitExceededError
from .transport import TransportResult


logger = logging.getLogger(__name__)

MAXIMUM_PAGE_SIZE = 500


def fetch_all_pages(
    operation: str,
    fetch_page: Callable[[int, int], TransportResult],
    *,
    page_size: int = MAXIMUM_PAGE_SIZE,
    max_pages: int | None = None,
) -> list[Any]:
    """
    逐页拉取直到某一页为空，按拉取顺序拼接所有条目。

    约定：
    - 页码从 1 开始，每页只请求一次
    - 任意一页失败立即抛 RemoteOperationFailedError，已累积的结果丢弃
    - 默认不限制页数（服务端永不返回空页时会一直拉取）；max_pages 仅作为可选的加固开关
    """
    items: list[Any] = []
    page = 1
    while True:
        if max_pages is not None and page > max_pages:
            raise PageLimitExceededError(max_pages)

        result = fetch_page(page, page_size)
        result.ensure_success(operation)

        page_items: Sequence[Any] = result.value or ()
        logger.debug("page fetched: operation=%s page=%d items=%d", operation, page, len(page_items))
        if len(page_items) == 0:
            return items

        items.extend(page_items)
        page += 1
