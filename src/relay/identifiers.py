"""Canonicalization of arbitrary names into Kubernetes-safe identifiers.

Two target grammars are supported:

- Domain names (DNS subdomain, used for resource names and label prefixes):
  lower case ``[a-z0-9.-]``, at most 253 characters.
- Label names (the name part of a label key or a label value):
  ``[A-Za-z0-9._-]``, at most 63 characters.

Both conversions are total: they never raise and always return a string,
which is empty only when the input leaves nothing to keep.
"""

import string

MAX_NAME_LENGTH = 253
MAX_LABEL_LENGTH = 63

# Returned by to_label() when both halves canonicalize to nothing.
NO_LABEL = "nolabel"

_DOMAIN_ALNUM = frozenset(string.ascii_lowercase + string.digits)
_DOMAIN_CHARS = _DOMAIN_ALNUM | frozenset(".-")

_LABEL_ALNUM = frozenset(string.ascii_letters + string.digits)
_LABEL_CHARS = _LABEL_ALNUM | frozenset("._-")


def _canonicalize(
    name: str,
    alnum: frozenset,
    allowed: frozenset,
    max_length: int,
    collapse_dots: bool,
) -> str:
    chars = []
    for index, ch in enumerate(name):
        if index == 0 and ch not in alnum:
            chars.append("0")
        chars.append(ch if ch in allowed else ".")
    result = "".join(chars)

    if collapse_dots:
        while ".." in result:
            result = result.replace("..", ".")

    if not result:
        return result
    result = result[:max_length]

    if result[-1] in alnum:
        return result
    if len(result) < max_length - 1:
        return result + "0"
    return result[:-2] + "0"


def to_domain_name(name: str) -> str:
    """Convert a name to domain name format.

    The result:

    - is lower case
    - starts with ``[a-z0-9]``; otherwise ``0`` is prepended
    - contains only ``[a-z0-9]``, ``.`` and ``-``; other characters become ``.``
    - has no consecutive ``..``
    - ends with ``[a-z0-9]``; otherwise ``0`` is appended (or replaces the
      tail when the name is already at the length limit)

    Args:
        name: Any string.

    Returns:
        The canonical domain name, or an empty string for empty input.
    """
    return _canonicalize(
        name.lower(),
        alnum=_DOMAIN_ALNUM,
        allowed=_DOMAIN_CHARS,
        max_length=MAX_NAME_LENGTH,
        collapse_dots=True,
    )


def to_label_name(name: str) -> str:
    """Convert the name part of a label.

    Same rules as to_domain_name() except that case is preserved, ``_`` is
    allowed, consecutive dots are kept and the limit is 63 characters.
    """
    return _canonicalize(
        name,
        alnum=_LABEL_ALNUM,
        allowed=_LABEL_CHARS,
        max_length=MAX_LABEL_LENGTH,
        collapse_dots=False,
    )


def to_label(value: str) -> str:
    """Convert ``prefix/name`` into a valid label key.

    The part before the first ``/`` is converted with to_domain_name(), the
    rest with to_label_name(). A half that converts to nothing is dropped
    together with the separator.

    Returns:
        The label key, or NO_LABEL when neither half survives.
    """
    prefix, _, label = value.partition("/")
    if "/" not in value:
        prefix, label = "", value

    new_prefix = to_domain_name(prefix)
    new_label = to_label_name(label)

    if new_prefix and new_label:
        return f"{new_prefix}/{new_label}"
    if new_prefix:
        return new_prefix
    if new_label:
        return new_label
    return NO_LABEL
