from typing import Tuple


def clamp(page: int, limit: int, max_limit: int = 100) -> Tuple[int, int]:
    return max(1, page), min(max(1, limit), max_limit)


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": (total + limit - 1) // limit if limit > 0 else 0,
    }
