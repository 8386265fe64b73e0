"""
Byte Range Ledger
=================
Merges the byte ranges of the source blob that primitives actually reference
into a minimal, ordered set of disjoint ranges, and translates absolute blob
offsets into offsets inside the packed output built from those ranges.

Ranges separated by a single byte are merged as well, so the packed output
never carries one-byte islands of unreferenced data between two regions.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Iterator, Sequence

from gltfinstancer.errors import StructuralInconsistencyError

logger = logging.getLogger(__name__)

# Largest gap (in bytes) between two ranges that still gets merged away.
MERGE_GAP: int = 1


@dataclass(frozen=True, order=True)
class ByteRange:
    """Half-open byte range [start, end) inside the source blob."""
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"Invalid byte range [{self.start}, {self.end})")

    def __len__(self) -> int:
        return self.end - self.start

    def __repr__(self) -> str:
        return f"[{self.start}, {self.end})"

    @property
    def is_empty(self) -> bool:
        return self.start == self.end


class RangeRelation(Enum):
    """How a newly registered range relates to one range already in the ledger."""
    STRICTLY_BEFORE = "strictly before"
    STRICTLY_AFTER = "strictly after"
    EXACT_MATCH = "exact match"
    LEFT_OVERLAP = "left overlap"
    RIGHT_OVERLAP = "right overlap"
    FULLY_CONTAINED = "fully contained"
    FULLY_COVERS = "fully covers"


def classify(existing: ByteRange, new: ByteRange) -> RangeRelation:
    """
    Classify `new` against `existing`.

    A gap of up to MERGE_GAP bytes between the two counts as an overlap.

    Args:
        existing: Range already stored in the ledger.
        new: Range being registered.

    Returns:
        The single relation that applies.
    """
    if new.end + MERGE_GAP < existing.start:
        return RangeRelation.STRICTLY_BEFORE
    if new.start > existing.end + MERGE_GAP:
        return RangeRelation.STRICTLY_AFTER
    if new.start == existing.start and new.end == existing.end:
        return RangeRelation.EXACT_MATCH
    if new.start >= existing.start and new.end <= existing.end:
        return RangeRelation.FULLY_CONTAINED
    if new.start <= existing.start and new.end >= existing.end:
        return RangeRelation.FULLY_COVERS
    if new.start < existing.start:
        return RangeRelation.LEFT_OVERLAP
    if new.end > existing.end:
        return RangeRelation.RIGHT_OVERLAP

    msg = f"Range {new} matches no known relation to {existing}"
    logger.error(msg)
    raise StructuralInconsistencyError(msg)


class ByteRangeLedger:
    """
    Ordered, disjoint cover of every byte range registered so far.

    The final cover does not depend on the order in which ranges were
    registered, so offsets handed out by `packed_offset` are only meaningful
    once every range has been registered.
    """

    def __init__(self, ranges: Sequence[ByteRange] = ()) -> None:
        self._ranges: list[ByteRange] = []
        for byte_range in ranges:
            self.register(byte_range)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._ranges})"

    def __len__(self) -> int:
        return len(self._ranges)

    def __iter__(self) -> Iterator[ByteRange]:
        return iter(self._ranges)

    @property
    def ranges(self) -> tuple[ByteRange, ...]:
        """The merged cover, ascending."""
        return tuple(self._ranges)

    @property
    def total_length(self) -> int:
        """Size in bytes of the packed output."""
        return sum(len(r) for r in self._ranges)

    def register(self, byte_range: ByteRange) -> int:
        """
        Merge a range into the ledger.

        The run of stored ranges touched by `byte_range` is replaced by one
        range spanning min(starts)..max(ends) with a single slice assignment.

        Args:
            byte_range: Range requested by a primitive.

        Returns:
            Offset of `byte_range.start` inside the packed output as the cover
            currently stands.
        """
        if byte_range.is_empty:
            return 0

        first_touched: int | None = None
        last_touched: int | None = None
        insert_at = len(self._ranges)

        for idx, existing in enumerate(self._ranges):
            relation = classify(existing, byte_range)

            if relation is RangeRelation.STRICTLY_AFTER:
                continue
            if relation in (RangeRelation.EXACT_MATCH, RangeRelation.FULLY_CONTAINED):
                return self.packed_offset(byte_range.start)
            if relation is RangeRelation.STRICTLY_BEFORE:
                if first_touched is None:
                    insert_at = idx
                break

            # LEFT_OVERLAP, RIGHT_OVERLAP or FULLY_COVERS
            if first_touched is None:
                first_touched = idx
            last_touched = idx
            if relation is RangeRelation.LEFT_OVERLAP:
                # nothing further right can touch the new range
                break

        if first_touched is None:
            self._ranges.insert(insert_at, byte_range)
        else:
            merged = ByteRange(
                start=min(byte_range.start, self._ranges[first_touched].start),
                end=max(byte_range.end, self._ranges[last_touched].end),
            )
            self._ranges[first_touched:last_touched + 1] = [merged]

        return self.packed_offset(byte_range.start)

    def packed_offset(self, absolute_offset: int) -> int:
        """
        Translate an absolute blob offset into an offset inside the packed output.

        Args:
            absolute_offset: Byte offset inside the source blob.

        Returns:
            Sum of the lengths of all merged ranges before the one containing
            the offset, plus the distance into that range.
        """
        relative = 0
        for byte_range in self._ranges:
            if byte_range.start <= absolute_offset < byte_range.end:
                return relative + absolute_offset - byte_range.start
            if absolute_offset < byte_range.start:
                break
            relative += len(byte_range)

        msg = f"Offset {absolute_offset} is not covered by the ledger"
        logger.error(msg)
        raise StructuralInconsistencyError(msg)

    def packed_range(self, byte_range: ByteRange) -> ByteRange:
        """
        Translate a registered range into its position inside the packed output.

        The range must lie inside a single merged range.
        """
        start = self.packed_offset(byte_range.start)
        if not byte_range.is_empty:
            last = self.packed_offset(byte_range.end - 1)
            if last - start != len(byte_range) - 1:
                msg = f"Range {byte_range} straddles two merged ranges"
                logger.error(msg)
                raise StructuralInconsistencyError(msg)
        return ByteRange(start, start + len(byte_range))

    def gather(self, blob: bytes) -> bytes:
        """Concatenate every merged range of `blob` into the packed output."""
        if self._ranges and self._ranges[-1].end > len(blob):
            msg = f"Ledger reaches byte {self._ranges[-1].end} but the blob has {len(blob)} bytes"
            logger.error(msg)
            raise StructuralInconsistencyError(msg)
        view = memoryview(blob)
        return b"".join(view[r.start:r.end] for r in self._ranges)
