"""
TaviList
Blueprint package — shared list helpers.
"""

from flask import request

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _int_arg(name, default, minimum=0):
    try:
        return max(int(request.args.get(name, default)), minimum)
    except (TypeError, ValueError):
        return default


def paginate_query(query, serialize=None, default_limit=DEFAULT_PAGE_SIZE, max_limit=MAX_PAGE_SIZE):
    """Apply ?limit= / ?offset= to a legacy Query and build the list envelope.

    Returns ``{"items", "total", "limit", "offset"}``. ``serialize`` maps each
    row to a dict (defaults to ``row.to_dict()``). Bad or negative values fall
    back to the defaults; limit is capped at ``max_limit``.
    """
    limit = min(_int_arg("limit", default_limit, minimum=1), max_limit)
    offset = _int_arg("offset", 0)
    serialize = serialize or (lambda row: row.to_dict())

    total = query.order_by(None).count()
    rows = query.limit(limit).offset(offset).all()
    return {
        "items": [serialize(row) for row in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }
