"""
Transaction references.

Checkout references embed the case they pay for:

    CASE-{case_id}-{epoch_milliseconds}

The case id may itself contain dashes, so the timestamp is whatever follows
the last dash. A reference without a numeric suffix is all case id.
"""
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

REFERENCE_PREFIX = "CASE"
SEPARATOR = "-"


@dataclass(frozen=True)
class ParsedReference:
    case_id: str
    timestamp_ms: Optional[int] = None


def build_reference(case_id: str, at: Optional[datetime] = None) -> str:
    """
    Build a checkout reference for a case.

    Args:
        case_id: Case identifier
        at: Optional moment to stamp (defaults to now)

    Returns:
        str: Transaction reference
    """
    stamp = int((at.timestamp() if at else time.time()) * 1000)
    return f"{REFERENCE_PREFIX}{SEPARATOR}{case_id}{SEPARATOR}{stamp}"


def parse_reference(reference: Optional[str]) -> Optional[ParsedReference]:
    """
    Extract the case id (and timestamp) from a reference.

    Returns None when the reference is empty or lacks the CASE prefix.
    """
    if not reference:
        return None
    prefix = f"{REFERENCE_PREFIX}{SEPARATOR}"
    if not reference.startswith(prefix):
        return None

    remainder = reference[len(prefix):]
    case_id, sep, suffix = remainder.rpartition(SEPARATOR)
    if sep and case_id and suffix.isdigit():
        return ParsedReference(case_id=case_id, timestamp_ms=int(suffix))
    if remainder.strip(SEPARATOR):
        return ParsedReference(case_id=remainder)
    return None


def is_newer_reference(candidate: Optional[str], current: Optional[str]) -> bool:
    """
    Whether `candidate` names a later checkout attempt than `current`.

    Different references count as newer unless both carry timestamps and
    the candidate's is not strictly greater.
    """
    if not candidate or candidate == current:
        return False
    if not current:
        return True

    parsed_candidate = parse_reference(candidate)
    parsed_current = parse_reference(current)
    if (
        parsed_candidate is not None
        and parsed_current is not None
        and parsed_candidate.timestamp_ms is not None
        and parsed_current.timestamp_ms is not None
    ):
        return parsed_candidate.timestamp_ms > parsed_current.timestamp_ms
    return True
