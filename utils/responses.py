from typing import Any, Dict, Optional
from fastapi.responses import JSONResponse
from utils.exceptions import DispatchError


def error_response(exc: DispatchError, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    """Domain error as {"success": false, "message", "error", "details"?}"""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )


def paginated_response(
    data: list,
    page: int,
    page_size: int,
    total: int,
    message: str = "Success",
    **extra: Any
) -> JSONResponse:
    """Paginated list; extra keys (e.g. applied filters) go next to the data"""
    content = {
        "success": True,
        "message": message,
        "data": data,
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": (total + page_size - 1) // page_size
        }
    }
    content.update(extra)
    return JSONResponse(status_code=200, content=content)
