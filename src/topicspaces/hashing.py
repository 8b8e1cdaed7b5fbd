"""Cheap content fingerprints for cache invalidation."""


def hash_text(text: str) -> str:
    """
    Fingerprint post text with a seed-free djb2 variant.

    Walks UTF-16 code units so the same text hashes identically on every
    platform and across restarts. Returns the unsigned 32-bit value as hex.
    Not cryptographic: only used to notice that a post's text changed.
    """
    h = 5381
    data = text.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h * 33) ^ unit) & 0xFFFFFFFF
    return format(h, "x")
