from decimal import Decimal, ROUND_HALF_UP
from typing import Any


# ─── Helper Functions ─────────────────────────────────────────────────────────
def success_response(message: str, data: Any = None) -> dict:
    """Return a standardized success dict (used in route handlers)."""
    return {"success": True, "message": message, "data": data}


def paginated_response(
    message: str,
    data: list,
    total: int,
    page: int,
    limit: int,
) -> dict:
    """Return a standardized paginated dict."""
    total_pages = (total + limit - 1) // limit if limit > 0 else 0
    return {
        "success": True,
        "message": message,
        "data": data,
        "meta": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        }
    }


def money(value: Decimal | float | None) -> float | None:
    """Monetary values go out with exactly two decimal places."""
    if value is None:
        return None
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
