"""Helpers for loosely typed multipart/query values ("", "null", "[1,2]", "1,2")."""
import json
from datetime import date, datetime, time
from typing import List, Optional, Sequence, Union

from fastapi import HTTPException


NULLS = {"", "null", "none", "undefined"}


def is_null(value: Optional[str]) -> bool:
    return value is None or str(value).strip().lower() in NULLS


def optional_int(value: Optional[Union[str, int]], field: str) -> Optional[int]:
    if value is None or isinstance(value, int):
        return value
    if is_null(value):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be an integer")


def id_list(values: Optional[Union[str, Sequence[str]]], field: str) -> List[int]:
    """Accepts repeated form fields, a JSON array or a comma separated string."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    out: List[int] = []
    for raw in values:
        raw = (raw or "").strip()
        if is_null(raw):
            continue
        if raw.startswith("["):
            try:
                items = json.loads(raw)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"{field} must be a list of ids")
        else:
            items = [x for x in raw.split(",") if x.strip()]
        for item in items:
            parsed = optional_int(str(item), field)
            if parsed is not None and parsed not in out:
                out.append(parsed)
    return out


def parse_date(value: Optional[str], field: str) -> Optional[date]:
    if is_null(value):
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be a date (YYYY-MM-DD)")


def parse_time(value: Optional[str], field: str) -> Optional[time]:
    if is_null(value):
        return None
    try:
        return time.fromisoformat(str(value).strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be a time (HH:MM[:SS])")


def parse_datetime(value: Optional[str], field: str) -> Optional[datetime]:
    if is_null(value):
        return None
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be an ISO datetime")
