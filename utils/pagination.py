import math
from typing import Dict, Tuple


def page_window(page: int, limit: int) -> Tuple[int, int, int]:
    """Clamp page/limit to at least 1 and return (page, limit, skip)."""
    page = max(page, 1)
    limit = max(limit, 1)
    return page, limit, (page - 1) * limit


def page_meta(total: int, page: int, limit: int, count: int) -> Dict[str, int]:
    return {
        "count": count,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit > 0 else 1,
        "current_page": page,
    }
