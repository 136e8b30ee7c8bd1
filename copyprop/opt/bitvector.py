from collections.abc import Iterable, Iterator


class BitVector:
    """Fixed-width set of copy indices.

    All vectors taking part in one operation must have the same width.
    """

    __slots__ = ("size", "bits")

    def __init__(self, size: int, indices: Iterable[int] = ()) -> None:
        self.size = size
        self.bits = 0
        for i in indices:
            self.set(i)

    @classmethod
    def _from_bits(cls, size: int, bits: int) -> "BitVector":
        result = cls(size)
        result.bits = bits
        return result

    def _check(self, other: "BitVector") -> None:
        assert self.size == other.size, (
            f"bit vector width mismatch: {self.size} != {other.size}"
        )

    def __getitem__(self, i: int) -> bool:
        assert 0 <= i < self.size, f"bit {i} out of range"
        return bool(self.bits >> i & 1)

    def set(self, i: int) -> None:
        assert 0 <= i < self.size, f"bit {i} out of range"
        self.bits |= 1 << i

    def reset(self, i: int) -> None:
        assert 0 <= i < self.size, f"bit {i} out of range"
        self.bits &= ~(1 << i)

    def count(self) -> int:
        return self.bits.bit_count()

    def any(self) -> bool:
        return self.bits != 0

    def __or__(self, other: "BitVector") -> "BitVector":
        self._check(other)
        return self._from_bits(self.size, self.bits | other.bits)

    def __and__(self, other: "BitVector") -> "BitVector":
        self._check(other)
        return self._from_bits(self.size, self.bits & other.bits)

    def __sub__(self, other: "BitVector") -> "BitVector":
        self._check(other)
        return self._from_bits(self.size, self.bits & ~other.bits)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BitVector):
            return NotImplemented
        return self.size == other.size and self.bits == other.bits

    __hash__ = None  # type: ignore[assignment]

    def __iter__(self) -> Iterator[int]:
        """Iterate over the set indices in increasing order."""
        for i in range(self.size):
            if self.bits >> i & 1:
                yield i

    def __len__(self) -> int:
        return self.size

    def copy(self) -> "BitVector":
        return self._from_bits(self.size, self.bits)

    def __str__(self) -> str:
        # Each bit is followed by a space, trailing one included.
        return "".join(f"{int(self[i])} " for i in range(self.size))

    def __repr__(self) -> str:
        return f"BitVector({self.size}, {list(self)})"
