"""
Deterministic percentage bucketing for segmentation conditions.

The algorithm is frozen: FNV-1a 32-bit over the UTF-8 bytes of
``normalize(value) + seed``, scaled from [0, 2**32) onto [0, 100). It is the
same hash the JavaScript SDK uses, so a user lands in the same bucket in
both. Changing any step here reshuffles every active rollout.
"""

import math
from decimal import Decimal
from typing import Any, Optional


FNV32_OFFSET_BASIS = 0x811C9DC5
FNV32_PRIME = 0x01000193
_UINT32_MASK = 0xFFFFFFFF
_MAX_SAFE_INTEGER = 2 ** 53

# Below every real range, so segmentation on missing context never matches
SENTINEL_BUCKET = -1.0


def fnv1a_32(data: bytes) -> int:
    """FNV-1a 32-bit hash of ``data`` as an unsigned int."""
    h = FNV32_OFFSET_BASIS
    for byte in data:
        h ^= byte
        h = (h * FNV32_PRIME) & _UINT32_MASK
    return h


def _js_number(value: float) -> str:
    """``Number.prototype.toString`` for a finite float."""
    if value == 0:
        return "0"
    if value < 0:
        return "-" + _js_number(-value)

    # repr gives the shortest round-tripping digits, as JS does
    _, digits, exponent = Decimal(repr(value)).as_tuple()
    digits = list(digits)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1
    s = "".join(str(d) for d in digits)
    k = len(s)
    n = exponent + k

    if k <= n <= 21:
        return s + "0" * (n - k)
    if 0 < n <= 21:
        return s[:n] + "." + s[n:]
    if -6 < n <= 0:
        return "0." + "0" * -n + s

    e = n - 1
    mantissa = s[0] + ("." + s[1:] if k > 1 else "")
    return f"{mantissa}e{'+' if e > 0 else '-'}{abs(e)}"


def normalize_bucket_input(value: Any) -> Optional[str]:
    """Render a scalar the way JavaScript's ``String(value)`` does.

    Numbers follow ``Number#toString``, including its exponent forms
    (``1e-7``, ``1e+21``). Ints beyond 2**53 are rendered through float,
    as JS would hold them. Returns None for values that cannot be bucketed.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        if abs(value) <= _MAX_SAFE_INTEGER:
            return str(value)
        try:
            value = float(value)
        except OverflowError:
            return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return _js_number(value)
    if isinstance(value, str):
        return value
    return None


class Bucketer:
    """Seed-keyed deterministic bucket assignment."""

    def assign(self, seed: str, value: Any) -> float:
        """Return the bucket of ``value`` under ``seed``, in [0, 100).

        Absent or non-scalar values get ``SENTINEL_BUCKET``.
        """
        rendered = normalize_bucket_input(value)
        if rendered is None:
            return SENTINEL_BUCKET

        h = fnv1a_32((rendered + seed).encode("utf-8"))
        return h / 2 ** 32 * 100


default_bucketer = Bucketer()


def assign_bucket(seed: str, value: Any) -> float:
    """Module-level shortcut for ``Bucketer().assign``."""
    return default_bucketer.assign(seed, value)
