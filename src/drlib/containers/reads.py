"""Containers for reads carrying direct-repeat occurrences, and the string interning store."""
from typing import Iterable, Iterator, Optional, Protocol, runtime_checkable

from drlib.core.alphabet import reverse_complement


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class ReadError(Exception):
    """Raised when a read annotation is malformed."""


# Protocols ------------------------------------------------------------------------------------------------------------
@runtime_checkable
class StringStore(Protocol):
    """Capability interface for string interning: one integer token per minted string."""
    def get_string(self, token: int) -> str: ...
    def add_string(self, string: str) -> int: ...
    def get_token(self, string: str) -> int: ...


# Classes --------------------------------------------------------------------------------------------------------------
class ReadAnnotation:
    """
    A read and the coordinates of the direct-repeat occurrences found in it.

    Coordinates are stored flat as ``[start0, stop0, start1, stop1, ...]`` with inclusive stops, in read
    order.

    Args:
        seq: The read sequence.
        start_stops: Flat list of repeat start/stop coordinates.
        header: Optional read identifier.

    Examples:
        >>> read = ReadAnnotation('GGACGTAA', [2, 5], header='r1')
        >>> read.repeat(0)
        'ACGT'
    """
    __slots__ = ('header', '_seq', '_start_stops', 'reversed')

    def __init__(self, seq: str, start_stops: Iterable[int], header: str = ''):
        self.header = header
        self._seq = seq.upper()
        self._start_stops = list(start_stops)
        if len(self._start_stops) % 2:
            raise ReadError(f'Read {header!r} has an odd number of start/stop coordinates')
        self.reversed = False

    def __len__(self): return len(self._seq)
    def __repr__(self): return f"ReadAnnotation({self.header!r}, len={len(self)}, repeats={self.num_repeats})"

    @property
    def seq(self) -> str: return self._seq

    @property
    def start_stops(self) -> list[int]: return self._start_stops

    @property
    def num_repeats(self) -> int: return len(self._start_stops) // 2

    def char_at(self, i: int) -> str: return self._seq[i]

    def spans(self) -> Iterator[tuple[int, int]]:
        """Yields ``(start, stop)`` for every repeat occurrence."""
        ss = self._start_stops
        for i in range(0, len(ss), 2): yield ss[i], ss[i + 1]

    def starts(self) -> Iterator[int]:
        yield from self._start_stops[::2]

    def repeat(self, i: int) -> str:
        """Returns the sequence of the ``i``-th repeat occurrence."""
        return self._seq[self._start_stops[2 * i]:self._start_stops[2 * i + 1] + 1]

    def full_length_spans(self, length: int) -> Iterator[tuple[int, int]]:
        """Yields the occurrences spanning exactly ``length`` bases (partial repeats are skipped)."""
        for start, stop in self.spans():
            if stop - start == length - 1: yield start, stop

    def first_full_length(self, length: int) -> Optional[tuple[int, int]]:
        return next(self.full_length_spans(length), None)

    def reverse_complement(self):
        """Reverse-complements the read in place, mirroring the repeat coordinates onto the other strand."""
        last = len(self._seq) - 1
        self._seq = reverse_complement(self._seq)
        flipped = []
        for start, stop in reversed(list(self.spans())):
            flipped.extend((last - stop, last - start))
        self._start_stops = flipped
        self.reversed = not self.reversed

    def update_start_stops(self, front_offset: int, repeat_length: int):
        """
        Rewrites the repeat coordinates to fit a corrected repeat.

        Every occurrence start moves back by ``front_offset`` and its stop is set ``repeat_length - 1``
        bases later. Occurrences are clipped to the read; those falling entirely outside it are dropped.

        Args:
            front_offset: Signed distance from the old occurrence start to the corrected repeat start.
            repeat_length: Length of the corrected repeat.
        """
        last = len(self._seq) - 1
        updated = []
        for start, _ in self.spans():
            new_start = start - front_offset
            new_stop = new_start + repeat_length - 1
            if new_start > last or new_stop < 0: continue
            updated.extend((max(new_start, 0), min(new_stop, last)))
        self._start_stops = updated


class SequenceStore:
    """
    In-memory string interning store.

    ``add_string`` always mints a new token, so one string may be reachable from several tokens;
    ``get_token`` returns the most recently minted one.

    Examples:
        >>> store = SequenceStore()
        >>> t = store.add_string('ACGT')
        >>> store.get_string(t)
        'ACGT'
    """
    __slots__ = ('_strings', '_latest')

    def __init__(self):
        self._strings: list[str] = []
        self._latest: dict[str, int] = {}

    def __len__(self): return len(self._strings)
    def __contains__(self, string: str): return string in self._latest

    def add_string(self, string: str) -> int:
        token = len(self._strings)
        self._strings.append(string)
        self._latest[string] = token
        return token

    def get_token(self, string: str) -> int:
        try: return self._latest[string]
        except KeyError: raise KeyError(f'String not in store: {string}') from None

    def get_string(self, token: int) -> str:
        if not 0 <= token < len(self._strings): raise KeyError(f'Unknown token: {token}')
        return self._strings[token]


class ReadRegistry:
    """
    Maps string tokens to the reads in which the corresponding repeat variant was found.

    Examples:
        >>> reg = ReadRegistry()
        >>> reg.add(0, ReadAnnotation('ACGTACGT', [0, 3]))
        >>> reg.num_reads()
        1
    """
    __slots__ = ('_reads',)

    def __init__(self):
        self._reads: dict[int, list[ReadAnnotation]] = {}

    def __len__(self): return len(self._reads)
    def __contains__(self, token: int): return token in self._reads
    def __iter__(self): return iter(self._reads)
    def __getitem__(self, token: int) -> list[ReadAnnotation]: return self._reads[token]
    def __repr__(self): return f"<ReadRegistry: {len(self)} variants, {self.num_reads()} reads>"

    def get(self, token: int) -> list[ReadAnnotation]: return self._reads.get(token, [])

    def add(self, token: int, read: ReadAnnotation):
        self._reads.setdefault(token, []).append(read)

    def set(self, token: int, reads: list[ReadAnnotation]):
        self._reads[token] = reads

    def move(self, old: int, new: int):
        """Re-files the read list of ``old`` under ``new``."""
        self._reads[new] = self._reads.pop(old)

    def discard(self, token: int):
        """Drops a token's read list; unknown tokens are ignored."""
        self._reads.pop(token, None)

    def tokens(self) -> list[int]: return list(self._reads)

    def num_reads(self, tokens: Iterable[int] = None) -> int:
        """Counts reads, over all tokens or the given ones."""
        if tokens is None: return sum(len(v) for v in self._reads.values())
        return sum(len(self._reads.get(t, ())) for t in tokens)

    def max_read_length(self) -> int:
        return max((len(r) for reads in self._reads.values() for r in reads), default=0)
