"""Decoder for the nginx VTS status document.

Flattens the per-upstream server lists into BackendSnapshot records.
Field names are matched case-insensitively, so both the module's
"upstreamZones" and "UpstreamZones" are accepted.
"""

import json
from typing import Any, List, Optional, Union

from reconciler import BackendSnapshot


class DecodeError(Exception):
    """Raised when a status payload cannot be turned into a snapshot."""
    pass


def _lookup(record: dict, name: str) -> Optional[Any]:
    """Find a field by name, preferring an exact match over a case-folded one."""
    if name in record:
        return record[name]
    folded = name.lower()
    for key, value in record.items():
        if isinstance(key, str) and key.lower() == folded:
            return value
    return None


def _decode_record(group: str, index: int, record: Any) -> BackendSnapshot:
    where = f"upstream {group!r} entry {index}"

    if not isinstance(record, dict):
        raise DecodeError(f"{where}: expected an object, got {type(record).__name__}")

    server = _lookup(record, "server")
    if server is None:
        raise DecodeError(f"{where}: missing field 'server'")
    if not isinstance(server, str) or not server:
        raise DecodeError(f"{where}: 'server' must be a non-empty string, got {server!r}")

    counter = _lookup(record, "requestCounter")
    if counter is None:
        raise DecodeError(f"{where}: missing field 'requestCounter'")
    if isinstance(counter, float) and counter.is_integer():
        counter = int(counter)
    if not isinstance(counter, int) or isinstance(counter, bool):
        raise DecodeError(
            f"{where}: 'requestCounter' must be an integer, got {type(counter).__name__}"
        )
    if counter < 0:
        raise DecodeError(f"{where}: 'requestCounter' must be >= 0, got {counter}")

    return BackendSnapshot(group=group, server=server, request_counter=counter)


def decode(payload: Union[bytes, str]) -> List[BackendSnapshot]:
    """Decode a VTS status payload into a flat list of backends.

    Args:
        payload: Raw JSON document as returned by the status endpoint

    Returns:
        Backends in document order, each tagged with its upstream name.
        Empty when the document has no upstream zones.

    Raises:
        DecodeError: If the payload is not JSON or a required field is
            absent or of the wrong type
    """
    try:
        data = json.loads(payload)
    except (TypeError, ValueError, RecursionError) as e:
        raise DecodeError(f"Invalid JSON in status payload: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(f"Status payload must be a JSON object, got {type(data).__name__}")

    zones = _lookup(data, "UpstreamZones")
    if zones is None:
        return []
    if not isinstance(zones, dict):
        raise DecodeError(f"'upstreamZones' must be an object, got {type(zones).__name__}")

    backends: List[BackendSnapshot] = []
    for group, records in zones.items():
        if not group:
            raise DecodeError("Upstream zone with an empty name")
        if records is None:
            continue
        if not isinstance(records, list):
            raise DecodeError(
                f"upstream {group!r}: expected a list of servers, got {type(records).__name__}"
            )
        for index, record in enumerate(records):
            backends.append(_decode_record(group, index, record))

    return backends
