from __future__ import annotations
from typing import Iterable, Optional, Tuple
from flask import request, make_response
from sqlalchemy.orm import Query
from servicetrack.config.pagination import normalize_pagination
from servicetrack.errors import ValidationFailed
import hashlib
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime

TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds (microseconds removed)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0)


def page_params() -> Tuple[int, int]:
    try:
        return normalize_pagination(request.args.get('page'), request.args.get('page_size'))
    except ValueError as e:
        raise ValidationFailed(str(e), details={'page': 'must be int', 'page_size': 'must be int'})


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    page, page_size = page_params()
    total = q.count()
    return q.offset((page - 1) * page_size).limit(page_size), total, page, page_size


def compute_etag(ids: Iterable[int], total: int, page: int, page_size: int, latest_ts: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{page}|{page_size}|{latest_ts or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, page: int, page_size: int, extra: Optional[dict] = None):
    payload = {
        'data': rows,
        'pagination': {
            'page': page,
            'page_size': page_size,
            'total': total,
            'total_pages': (total + page_size - 1) // page_size if page_size else 0,
            'returned': len(rows),
        }
    }
    if extra:
        payload.update(extra)
    return payload


def _http_date(dt: datetime) -> str:
    return format_datetime(dt, usegmt=True)


def make_cached_list_response(rows: list, total: int, page: int, page_size: int,
                              latest_ts: Optional[datetime] = None, extra: Optional[dict] = None):
    ids = [r.get('id') for r in rows]
    latest_ts_c = canonicalize_timestamp(latest_ts) if isinstance(latest_ts, datetime) else None
    latest_iso = latest_ts_c.isoformat().replace('+00:00', 'Z') if latest_ts_c else ''
    etag = compute_etag(ids, total, page, page_size, latest_iso)
    resp = make_response(build_list_payload(rows, total, page, page_size, extra))
    resp.headers['ETag'] = etag
    if latest_ts_c:
        resp.headers['Last-Modified'] = _http_date(latest_ts_c)
    return resp, etag


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    try:
        dt = datetime.fromisoformat(header_val.replace('Z', '+00:00'))
    except ValueError:
        try:
            dt = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
    if dt and dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Evaluate conditional request headers.

    Precedence: If-None-Match over If-Modified-Since.
    Returns a 304 response object if conditions satisfied, else None.
    """
    inm = request.headers.get('If-None-Match')
    if inm and inm.strip('"') == etag_value:
        resp = make_response('', 304)
        resp.headers['ETag'] = etag_value
        if latest_ts:
            resp.headers['Last-Modified'] = _http_date(canonicalize_timestamp(latest_ts))
        return resp
    ims_raw = request.headers.get('If-Modified-Since')
    if ims_raw and latest_ts:
        ims_dt = _parse_if_modified_since(ims_raw)
        if ims_dt:
            latest_c = canonicalize_timestamp(latest_ts)
            if latest_c <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE:
                resp = make_response('', 304)
                resp.headers['ETag'] = etag_value
                resp.headers['Last-Modified'] = _http_date(latest_c)
                return resp
    return None


def cached_list(rows: list, total: int, page: int, page_size: int,
                latest_ts: Optional[datetime] = None, extra: Optional[dict] = None):
    """Build the list response and short-circuit to 304 when the client copy is current."""
    resp, etag = make_cached_list_response(rows, total, page, page_size, latest_ts, extra)
    cond = handle_conditional(etag, latest_ts)
    return cond or resp
