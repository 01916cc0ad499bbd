"""Last-known-good query cache used to ride out transient store failures."""

import logging
import threading
from copy import deepcopy

from record_store.client import TransientStoreError


def default_query_cache():
    return {"lock": threading.Lock(), "entries": {}}


def _freeze(value):
    if isinstance(value, (list, set, frozenset)):
        return ("any", tuple(sorted((str(item) for item in value))))
    if isinstance(value, tuple):
        return ("op",) + tuple(str(item) for item in value)
    return ("eq", str(value))


def query_cache_key(collection, filters=None, sort=None):
    frozen = tuple(sorted((str(field), _freeze(value)) for field, value in (filters or {}).items()))
    return (str(collection), frozen, str(sort or ""))


def cached_query(cache, store, collection, filters=None, sort=None, *, fetch=None):
    """
    Query the store and remember the result as last known good.

    On a transient failure (timeout, abort, reset) the cached result for the same
    key is returned instead of surfacing empty data. Without a cached entry the
    error propagates to the caller.

    `fetch` optionally replaces the plain `store.query` call, e.g. to wrap it in
    call_with_retries.
    """
    key = query_cache_key(collection, filters, sort)
    try:
        if fetch is not None:
            records = fetch()
        else:
            records = store.query(collection, filters=filters, sort=sort)
    except TransientStoreError as exc:
        with cache["lock"]:
            entry = cache["entries"].get(key)
        if entry is None:
            raise
        logging.warning(
            "Query cache: serving last known good result for %s after transient failure: %s",
            collection,
            exc,
        )
        return deepcopy(entry["records"])

    with cache["lock"]:
        cache["entries"][key] = {"records": deepcopy(records), "collection": str(collection), "filters": dict(filters or {})}
    return records


def invalidate_cache(cache, collection, match=None):
    """
    Drop cached entries of `collection` whose filters agree with `match`.

    `match` maps field names to the values of the changed record; an entry is
    dropped unless one of its equality filters contradicts the changed record.
    Returns the number of dropped entries.
    """
    match = match or {}
    dropped = 0
    with cache["lock"]:
        for key in list(cache["entries"].keys()):
            entry = cache["entries"][key]
            if entry["collection"] != str(collection):
                continue
            contradicts = False
            for field, value in match.items():
                if field not in entry["filters"]:
                    continue
                filter_value = entry["filters"][field]
                if isinstance(filter_value, (list, set, frozenset)):
                    if str(value) not in {str(item) for item in filter_value}:
                        contradicts = True
                elif not isinstance(filter_value, tuple) and str(filter_value) != str(value):
                    contradicts = True
            if not contradicts:
                del cache["entries"][key]
                dropped += 1
    return dropped
