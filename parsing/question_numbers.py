"""
Question-number normalization

Canonical key used to match answer-key entries against extracted questions:
"Q1", "Qn 1.", "Q.1", "Question 1" and "1" all map to "1".

The mapping is lossy: "1a" and "1 (a)" collapse to the same key.
"""

import re

_NON_ALNUM = re.compile(r"[\W_]+", re.UNICODE)
_PREFIX = re.compile(r"^(?:question|qn|q)(?=\d)")


def normalize_question_number(value) -> str:
    """
    Lower-case, drop punctuation/whitespace, strip question prefixes.

    Total (any input, including None, yields a string), deterministic and
    idempotent.
    """
    if value is None:
        return ""
    key = _NON_ALNUM.sub("", str(value).lower())
    while True:
        stripped = _PREFIX.sub("", key)
        if stripped == key:
            return key
        key = stripped
