"""Non-cryptographic fingerprints for cache keys and ETags.

These are content fingerprints, not a security boundary.
"""

FNV64_OFFSET_BASIS = 0xCBF29CE484222325
FNV64_PRIME = 0x100000001B3
_FNV64_MASK = 0xFFFFFFFFFFFFFFFF


def fnv1a_64(data: str) -> int:
    """64-bit FNV-1a over the UTF-8 encoding of *data*."""
    value = FNV64_OFFSET_BASIS
    for byte in data.encode("utf-8"):
        value ^= byte
        value = (value * FNV64_PRIME) & _FNV64_MASK
    return value


def hash_string(data: str) -> str:
    """Return the FNV-1a hash of *data* as 16 lowercase hex characters."""
    return format(fnv1a_64(data), "016x")
