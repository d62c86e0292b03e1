"""Pairwise affine-gap alignment and placement of repeat variants against a master sequence."""
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import NamedTuple, Union, Iterable
from warnings import warn

import numpy as np

from drlib import PlacementWarning
from drlib.core.alphabet import encode, encode_reverse_complement, AMBIGUOUS
from drlib.containers.reads import ReadRegistry
from drlib.utils.resources import jit


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class AlignmentError(Exception):
    """Raised when an alignment cannot be computed from its inputs."""


# Constants ------------------------------------------------------------------------------------------------------------
UNPLACED = -1


class Trace(IntEnum):
    """Traceback pointer flags stored in the DP matrix during alignment."""
    MATCH = 0
    E = 1
    F = 2
    STOP = 3
    E_EXT = 4
    F_EXT = 8


# Classes --------------------------------------------------------------------------------------------------------------
class ScoreMatrix:
    """
    Represents a nucleotide substitution matrix, with a fifth row/column for ambiguous bases.

    Attributes:
        _data (np.ndarray): The raw matrix data.

    Examples:
        >>> m = ScoreMatrix.build(match=1, mismatch=-3)
        >>> int(m[0, 0]), int(m[0, 1]), int(m[0, 4])
        (1, -3, 0)
    """
    _DTYPE = np.int32
    __slots__ = ('_data',)

    def __init__(self, data: Union[np.ndarray, Iterable]):
        self._data = np.ascontiguousarray(data, dtype=self._DTYPE)
        if self._data.shape != (AMBIGUOUS + 1, AMBIGUOUS + 1):
            raise AlignmentError(f'Score matrix must be {AMBIGUOUS + 1}x{AMBIGUOUS + 1}, got {self._data.shape}')
        self._data.flags.writeable = False

    def __getitem__(self, item): return self._data[item]
    def __array__(self, dtype=None): return self._data.astype(dtype, copy=False) if dtype else self._data
    def __repr__(self): return f"ScoreMatrix{self._data.shape}"

    @property
    def shape(self): return self._data.shape

    @classmethod
    def build(cls, match: int = 1, mismatch: int = -3, ambiguous: int = 0) -> 'ScoreMatrix':
        """Builds a match/mismatch matrix scoring any pairing with an ambiguous base as ``ambiguous``."""
        M = np.full((AMBIGUOUS + 1, AMBIGUOUS + 1), mismatch, dtype=cls._DTYPE)
        np.fill_diagonal(M, match)
        M[AMBIGUOUS, :] = ambiguous
        M[:, AMBIGUOUS] = ambiguous
        return cls(M)


class AlignmentResult(NamedTuple):
    """
    A local alignment of a query against a target; begins and ends are 0-based and inclusive.
    """
    score: int
    target_begin: int
    target_end: int
    query_begin: int
    query_end: int

    @property
    def offset(self) -> int:
        """Position of the query's first base in target coordinates."""
        return self.target_begin - self.query_begin


class Placement(NamedTuple):
    """Where a variant sits relative to the master, and on which strand."""
    offset: int
    reversed: bool = False
    score: int = 0

    @property
    def failed(self) -> bool: return self.offset == UNPLACED

    @classmethod
    def unplaced(cls, score: int = 0) -> 'Placement': return cls(UNPLACED, False, score)


class Aligner(ABC):
    """Interface for pairwise aligners used to place variants."""
    @abstractmethod
    def align(self, query: Union[str, np.ndarray], target: Union[str, np.ndarray]) -> AlignmentResult:
        """Aligns ``query`` against ``target``. Strings are encoded, arrays are taken as already encoded."""
        ...


class LocalAligner(Aligner):
    """
    Banded affine-gap local aligner (Smith-Waterman-Gotoh) with traceback.

    Args:
        score_matrix: Substitution scores; built from ``match``/``mismatch`` when omitted.
        match: Score for identical bases.
        mismatch: Score for differing bases.
        gap_open: Penalty for opening a gap (charged for the first gapped base).
        gap_extend: Penalty for each further gapped base.
        band_padding: Diagonals allowed beyond the length difference of the two sequences.

    Examples:
        >>> LocalAligner().align('ACGTTGCA', 'GGACGTTGCAGG').offset
        2
    """
    __slots__ = ('_score_matrix', 'gap_open', 'gap_extend', 'band_padding')

    def __init__(self, score_matrix: ScoreMatrix = None, match: int = 1, mismatch: int = -3, gap_open: int = 5,
                 gap_extend: int = 2, band_padding: int = 50):
        self._score_matrix = score_matrix if score_matrix is not None else ScoreMatrix.build(match, mismatch)
        self.gap_open = gap_open
        self.gap_extend = gap_extend
        self.band_padding = band_padding

    def align(self, query, target) -> AlignmentResult:
        q = encode(query) if isinstance(query, str) else np.asarray(query, dtype=np.uint8)
        t = encode(target) if isinstance(target, str) else np.asarray(target, dtype=np.uint8)
        if len(q) == 0 or len(t) == 0: raise AlignmentError('Cannot align an empty sequence')
        band = abs(len(q) - len(t)) + self.band_padding
        score, qb, qe, tb, te = _local_align_kernel(
            q, t, np.asarray(self._score_matrix), self.gap_open, self.gap_extend, band
        )
        return AlignmentResult(int(score), int(tb), int(te), int(qb), int(qe))


class OffsetAligner:
    """
    Places a variant against its group's master sequence.

    Both strands of the variant are aligned to the master and the better scoring strand wins. An exact tie
    is broken by realigning the variant with ``extension`` bases of read context on either side; a tie
    that persists, a variant with no read occurrence far enough from the read ends, or a best score below
    ``min_score`` leaves the variant unplaced.

    Args:
        aligner: The pairwise aligner.
        registry: Reads for each variant token, used to pull read context for tie-breaking.
        min_score: Minimum winning score.
        extension: Bases of context added on each side when breaking ties.
    """
    __slots__ = ('aligner', 'registry', 'min_score', 'extension')

    def __init__(self, aligner: Aligner, registry: ReadRegistry, min_score: int = 0, extension: int = 2):
        self.aligner = aligner
        self.registry = registry
        self.min_score = min_score
        self.extension = extension

    def place(self, master: str, candidate: str, token: int) -> Placement:
        """
        Computes the offset and orientation of ``candidate`` against ``master``.

        Args:
            master: The master sequence.
            candidate: The variant sequence.
            token: The variant's token, used to look up its reads.

        Returns:
            The placement; ``Placement.failed`` is set when the variant cannot be placed.
        """
        master_enc = encode(master)
        fwd, rev = self._align_both(encode(candidate), master_enc)
        flank = 0
        if fwd.score == rev.score:
            if (window := self._extended_window(candidate, token)) is None:
                warn(f'Cannot place variant {candidate} ({token}): strands tie at {fwd.score} and no read '
                     f'occurrence can be extended', PlacementWarning)
                return Placement.unplaced(fwd.score)
            fwd, rev = self._align_both(encode(window), master_enc)
            flank = self.extension
            if fwd.score == rev.score:
                warn(f'Cannot place variant {candidate} ({token}): extended variant {window} still ties at '
                     f'{fwd.score} against master {master}', PlacementWarning)
                return Placement.unplaced(fwd.score)

        if rev.score > fwd.score and rev.score >= self.min_score:
            return Placement(rev.offset + flank, True, rev.score)
        if fwd.score >= self.min_score:
            return Placement(fwd.offset + flank, False, fwd.score)
        warn(f'Cannot place variant {candidate} ({token}) against master {master}: forward score {fwd.score}, '
             f'reverse score {rev.score}', PlacementWarning)
        return Placement.unplaced(max(fwd.score, rev.score))

    def _align_both(self, query: np.ndarray, target: np.ndarray) -> tuple[AlignmentResult, AlignmentResult]:
        return self.aligner.align(query, target), self.aligner.align(encode_reverse_complement(query), target)

    def _extended_window(self, candidate: str, token: int):
        ext = self.extension
        for read in self.registry.get(token):
            if (span := read.first_full_length(len(candidate))) is None: continue
            start, stop = span
            if start - ext < 0 or stop + ext >= len(read): continue
            return read.seq[start - ext:stop + ext + 1]
        return None


# Kernels --------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True)
def _local_align_kernel(seq1, seq2, matrix, gap_open, gap_extend, band):
    """
    Local affine-gap alignment of ``seq1`` (rows, query) against ``seq2`` (columns, target).

    Returns (score, query_begin, query_end, target_begin, target_end), ends inclusive.
    """
    rows = len(seq1) + 1
    cols = len(seq2) + 1
    NEG_INF = -1_000_000_000

    H = np.zeros((rows, cols), dtype=np.int32)
    F = np.full(cols, NEG_INF, dtype=np.int32)
    trace = np.full((rows, cols), Trace.STOP, dtype=np.uint8)

    global_max = 0
    max_r = 0
    max_c = 0

    for r in range(1, rows):
        running_E = NEG_INF
        char_q = seq1[r - 1]
        start_c = max(1, r - band)
        end_c = min(cols, r + band + 1)
        if start_c > 1: F[start_c - 1] = NEG_INF
        for c in range(start_c, end_c):
            f_ext = F[c] - gap_extend
            f_open = H[r - 1, c] - gap_open
            if f_ext >= f_open and F[c] > NEG_INF:
                F[c] = f_ext
                f_bit = Trace.F_EXT
            else:
                F[c] = f_open
                f_bit = 0
            e_ext = running_E - gap_extend
            e_open = H[r, c - 1] - gap_open
            if e_ext >= e_open and running_E > NEG_INF:
                running_E = e_ext
                e_bit = Trace.E_EXT
            else:
                running_E = e_open
                e_bit = 0

            best = matrix[char_q, seq2[c - 1]] + H[r - 1, c - 1]
            source = Trace.MATCH
            if F[c] > best:
                best = F[c]
                source = Trace.F
            if running_E > best:
                best = running_E
                source = Trace.E
            if best <= 0:
                best = 0
                source = Trace.STOP

            H[r, c] = best
            trace[r, c] = source | e_bit | f_bit
            if best > global_max:
                global_max = best
                max_r = r
                max_c = c

    if global_max == 0: return 0, 0, -1, 0, -1

    # Traceback, tracking which of the three DP layers we are in
    r = max_r
    c = max_c
    state = 0
    while r > 0 and c > 0:
        flag = trace[r, c]
        if state == 0:
            h_src = flag & 3
            if h_src == Trace.STOP: break
            if h_src == Trace.MATCH:
                r -= 1
                c -= 1
            else:
                state = h_src
        elif state == Trace.F:
            ext = flag & Trace.F_EXT
            r -= 1
            if not ext: state = 0
        else:
            ext = flag & Trace.E_EXT
            c -= 1
            if not ext: state = 0
    return global_max, r, max_r - 1, c, max_c - 1
