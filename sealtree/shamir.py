"""
Shamir — threshold secret sharing over GF(256).

Used for quorum mode: the data key is split into one share per key group,
and any `threshold` groups together can put it back together. Fewer than
`threshold` shares reveal nothing about the key.

Each byte of the secret gets its own random polynomial of degree
threshold - 1; share i is every polynomial evaluated at x = i.
"""

import secrets
from dataclasses import dataclass

MAX_SHARES = 255

# GF(256) with the AES reduction polynomial, generator 3
_EXP = [0] * 512
_LOG = [0] * 256
_x = 1
for _i in range(255):
    _EXP[_i] = _x
    _LOG[_x] = _i
    _x ^= ((_x << 1) ^ (0x11B if _x & 0x80 else 0)) & 0xFF
for _i in range(255, 512):
    _EXP[_i] = _EXP[_i - 255]
del _x, _i


def _mul(a: int, b: int) -> int:
    if a == 0 or b == 0:
        return 0
    return _EXP[_LOG[a] + _LOG[b]]


def _div(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("division by zero in GF(256)")
    if a == 0:
        return 0
    return _EXP[(_LOG[a] - _LOG[b]) % 255]


@dataclass(frozen=True)
class Share:
    """One share: the evaluation point x (1..255) and one byte per secret byte."""

    x: int
    y: bytes

    def to_bytes(self) -> bytes:
        return bytes([self.x]) + self.y

    @classmethod
    def from_bytes(cls, data: bytes) -> "Share":
        if len(data) < 2 or data[0] == 0:
            raise ValueError("Malformed share")
        return cls(x=data[0], y=bytes(data[1:]))


def split(secret: bytes, threshold: int, shares: int) -> list[Share]:
    """Split `secret` into `shares` shares, any `threshold` of which recover it."""
    if not secret:
        raise ValueError("Cannot split an empty secret")
    if not 2 <= threshold <= shares <= MAX_SHARES:
        raise ValueError(
            f"Need 2 <= threshold <= shares <= {MAX_SHARES}, got threshold={threshold}, shares={shares}"
        )

    ys = [bytearray(len(secret)) for _ in range(shares)]
    for pos, byte in enumerate(secret):
        coeffs = [byte] + list(secrets.token_bytes(threshold - 1))
        for idx in range(shares):
            x = idx + 1
            # Horner's rule, highest coefficient first
            acc = 0
            for coeff in reversed(coeffs):
                acc = _mul(acc, x) ^ coeff
            ys[idx][pos] = acc
    return [Share(x=idx + 1, y=bytes(y)) for idx, y in enumerate(ys)]


def combine(shares: list[Share]) -> bytes:
    """Recover the secret from at least `threshold` distinct shares."""
    if not shares:
        raise ValueError("No shares to combine")
    xs = [share.x for share in shares]
    if len(set(xs)) != len(xs):
        raise ValueError("Duplicate share indices")
    length = len(shares[0].y)
    if any(len(share.y) != length for share in shares):
        raise ValueError("Shares have different lengths")

    # Lagrange basis polynomials evaluated at x = 0
    basis = []
    for i, xi in enumerate(xs):
        num, den = 1, 1
        for j, xj in enumerate(xs):
            if i != j:
                num = _mul(num, xj)
                den = _mul(den, xj ^ xi)
        basis.append(_div(num, den))

    secret = bytearray(length)
    for pos in range(length):
        acc = 0
        for share, weight in zip(shares, basis):
            acc ^= _mul(share.y[pos], weight)
        secret[pos] = acc
    return bytes(secret)
