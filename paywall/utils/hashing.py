"""
Hashing and identifier utilities

Input and result hashes are recomputed independently by the payment service.
Both go through the masumi SDK helpers (MIP-004); this module only prepares
the values handed to them.
"""

import json
import logging
import math
import secrets
from typing import Any, Mapping

import canonicaljson
from masumi.helper_functions import create_masumi_input_hash, create_masumi_output_hash

from paywall.core.errors import EncodingError

logger = logging.getLogger(__name__)

IDENTIFIER_BYTES = 7
PURCHASER_ID_MIN_LENGTH = 14
PURCHASER_ID_MAX_LENGTH = 26


class _Absent:
    """Marker for a field that is present in a mapping but has no value (JS ``undefined``)"""

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


def _normalize(value: Any, seen: set) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodingError(f"Cannot canonicalize non-finite number: {value}")
        if value.is_integer() and abs(value) < 1e21:
            return int(value)
        return value

    if isinstance(value, Mapping):
        if id(value) in seen:
            raise EncodingError("Cannot canonicalize cyclic structure")
        seen.add(id(value))
        try:
            return {
                _check_key(key): _normalize(item, seen)
                for key, item in value.items()
                if item is not ABSENT
            }
        finally:
            seen.discard(id(value))

    if isinstance(value, (list, tuple)):
        if id(value) in seen:
            raise EncodingError("Cannot canonicalize cyclic structure")
        seen.add(id(value))
        try:
            # absent array slots serialize as null, like JSON.stringify
            return [None if item is ABSENT else _normalize(item, seen) for item in value]
        finally:
            seen.discard(id(value))

    if value is ABSENT:
        return None

    raise EncodingError(f"Cannot canonicalize value of type {type(value).__name__}")


def _check_key(key: Any) -> str:
    if not isinstance(key, str):
        raise EncodingError(f"Object keys must be strings, got {type(key).__name__}")
    return key


def normalize(value: Any) -> Any:
    """
    JSON-like copy of a value ready for canonical encoding.

    ABSENT fields are dropped, ABSENT array slots become null and integral
    floats become integers.

    Raises:
        EncodingError: If the value is cyclic or not JSON-like
    """
    return _normalize(value, set())


def canonicalize(value: Any) -> str:
    """Canonical JSON string of a value, as hashed into the input hash"""
    try:
        return canonicaljson.encode_canonical_json(normalize(value)).decode("utf-8")
    except UnicodeEncodeError as e:
        raise EncodingError(f"Cannot encode value as UTF-8: {e.reason}") from e


def input_hash(purchaser_id: str, input_data: Any) -> str:
    """
    Hash binding a purchaser to a job input.

    Format: sha256(purchaser_id;canonical_input)

    Args:
        purchaser_id: Identifier from purchaser
        input_data: Job input (mapping, list or scalar)

    Returns:
        64-character lowercase hex digest
    """
    normalized = normalize(input_data)
    try:
        return create_masumi_input_hash(normalized, purchaser_id)
    except UnicodeEncodeError as e:
        raise EncodingError(f"Cannot encode input as UTF-8: {e.reason}") from e


def result_text(result: Any) -> str:
    """String form of a result; non-strings become compact JSON in their own key order"""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Cannot serialize result: {e}") from e


def result_hash(purchaser_id: str, result: Any) -> str:
    """
    Hash submitted to the ledger when a job completes.

    Format: sha256(purchaser_id;escaped_result), the result escaped as a JSON
    string body without the surrounding quotes.
    """
    text = result_text(result)
    try:
        return create_masumi_output_hash(text, purchaser_id)
    except UnicodeEncodeError as e:
        raise EncodingError(f"Cannot encode result as UTF-8: {e.reason}") from e


def new_identifier() -> str:
    """14-character lowercase hex identifier from a CSPRNG"""
    return secrets.token_hex(IDENTIFIER_BYTES)


def purchaser_identifier(raw: str) -> str:
    """
    Hex form of a caller-supplied purchaser identifier, as accepted by the
    payment service for identifierFromPurchaser (14 to 26 hex characters).
    """
    hex_string = raw.encode("utf-8", "surrogatepass").hex()
    if len(hex_string) < PURCHASER_ID_MIN_LENGTH:
        hex_string = hex_string.ljust(PURCHASER_ID_MIN_LENGTH, "0")
    if len(hex_string) > PURCHASER_ID_MAX_LENGTH:
        logger.debug(f"Truncating purchaser identifier to {PURCHASER_ID_MAX_LENGTH} hex characters")
        hex_string = hex_string[:PURCHASER_ID_MAX_LENGTH]
    return hex_string
