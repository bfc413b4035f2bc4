from typing import Optional

DEFAULT_PAGE_SIZE = 20


def resolve_page(page: Optional[int], page_size: Optional[int]) -> tuple[Optional[int], Optional[int]]:
    """Fill in the missing half of ``page``/``pageSize``.

    Without either parameter the whole list is returned; with only one of
    them the other defaults (page 1, ``DEFAULT_PAGE_SIZE`` items).
    """
    if page is None and page_size is None:
        return None, None
    return page or 1, page_size or DEFAULT_PAGE_SIZE


def pagination_meta(total: int, page: Optional[int], page_size: Optional[int]) -> dict:
    return {'total': total, 'page': page or 1, 'pageSize': page_size or total}
