# src/cache/keys.py — v1
"""Deterministic cache keys for program classifications.

Key layout:

    <name>::states=<a,b>::types=<x,y>::measures=<m,n>::text=<sha256[:12]>

Tag lists are sorted so that reordering tags does not change the key. The
text digest covers description and source, so any change to a
classification-relevant field produces a new key.
"""

from __future__ import annotations

import hashlib
import re

from fundmatch.core.models import FundingProgram

KEY_SEPARATOR = "::"
_TEXT_DIGEST_LENGTH = 12


def program_cache_key(program: FundingProgram) -> str:
    """Build the cache key for a program."""
    return KEY_SEPARATOR.join(
        [
            program.name,
            f"states={_join_sorted(program.federal_states)}",
            f"types={_join_sorted(program.type)}",
            f"measures={_join_sorted(program.measures)}",
            f"text={_text_digest(program)}",
        ]
    )


def name_from_key(key: str) -> str:
    """Recover the program name from a key ("" if the key is foreign)."""
    name, sep, _ = key.partition(f"{KEY_SEPARATOR}states=")
    return name if sep else ""


def name_pattern(name: str) -> re.Pattern[str]:
    """Matches every key (any version) belonging to program ``name``."""
    return re.compile(rf"^{re.escape(name)}{KEY_SEPARATOR}states=")


def region_pattern(region: str) -> re.Pattern[str]:
    """Matches keys whose state list contains ``region``."""
    return _tag_pattern("states", region)


def type_pattern(program_type: str) -> re.Pattern[str]:
    """Matches keys whose type list contains ``program_type``."""
    return _tag_pattern("types", program_type)


def _tag_pattern(field: str, tag: str) -> re.Pattern[str]:
    return re.compile(
        rf"{KEY_SEPARATOR}{field}=(?:[^:]*,)?{re.escape(tag)}(?:,[^:]*)?{KEY_SEPARATOR}"
    )


def _join_sorted(tags: list[str]) -> str:
    return ",".join(sorted(tags))


def _text_digest(program: FundingProgram) -> str:
    payload = f"{program.description}\n{program.source}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()[:_TEXT_DIGEST_LENGTH]
