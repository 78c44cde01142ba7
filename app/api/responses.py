# app/api/responses.py
from typing import Any, Iterable
from pydantic import BaseModel

from app.db.repository import Page


def ok(data: Any) -> dict[str, Any]:
    """Success envelope; validated against the route's ApiResponse[...] model."""
    return {"success": True, "data": data}


def many(schema: type[BaseModel], rows: Iterable[Any]) -> list[BaseModel]:
    return [schema.model_validate(row) for row in rows]


def paged(schema: type[BaseModel], page: Page[Any]) -> dict[str, Any]:
    return ok(
        {
            "items": many(schema, page.items),
            "total": page.total,
            "page": page.page,
            "page_size": page.page_size,
            "total_pages": page.total_pages,
        }
    )


def error_body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"success": False, "error": error}


__all__ = ["ok", "many", "paged", "error_body"]
