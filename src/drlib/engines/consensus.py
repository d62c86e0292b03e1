"""Coverage arrays, consensus calling and collapse detection for one group of repeat variants."""
from typing import NamedTuple, Optional
from warnings import warn

import numpy as np

from drlib import RejectionWarning
from drlib.core.alphabet import Nucleotide, AMBIGUOUS, encode, reverse_complement, spell
from drlib.containers.cluster import ClusterGroup
from drlib.containers.reads import ReadRegistry, StringStore
from drlib.engines.pairwise import OffsetAligner


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class ConsistencyError(Exception):
    """Raised when group data breaks an invariant the consensus relies on."""


class CoverageError(ConsistencyError):
    """Raised when a read would be counted outside the coverage matrix."""


# Classes --------------------------------------------------------------------------------------------------------------
class CoverageMatrix:
    """
    Per-position base counts of every read placed in one group's coordinate frame.

    Args:
        length: Number of positions in the frame.
        gid: The group the matrix belongs to, used in error messages.

    Examples:
        >>> cov = CoverageMatrix(8)
        >>> cov.add_read('ACGT', 2)
        >>> cov.consensus_string(2, 5)
        'ACGT'
    """
    __slots__ = ('counts', 'consensus', 'conservation', 'gid')

    def __init__(self, length: int, gid: int = None):
        self.counts = np.zeros((len(Nucleotide), length), dtype=np.int32)
        self.consensus = np.zeros(length, dtype=np.uint8)
        self.conservation = np.zeros(length, dtype=np.float32)
        self.gid = gid

    def __len__(self): return self.counts.shape[1]
    def __repr__(self): return f"CoverageMatrix(length={len(self)}, depth={int(self.counts.sum())})"

    def add_read(self, seq: str, start: int):
        """
        Counts every base of ``seq`` with its first base at frame position ``start``.

        Ambiguous bases are skipped.

        Raises:
            CoverageError: If any base would land outside the frame.
        """
        end = start + len(seq)
        if start < 0 or end > len(self):
            bad = start if start < 0 else end - 1
            raise CoverageError(f'Coverage index {bad} outside [0, {len(self)}) in group {self.gid}; '
                                f'the coverage array is too short or the read placement is corrupt')
        encoded = encode(seq)
        positions = np.arange(start, end)
        valid = encoded != AMBIGUOUS
        np.add.at(self.counts, (encoded[valid], positions[valid]), 1)

    @property
    def depth(self) -> np.ndarray:
        return self.counts.sum(axis=0)

    def call(self, min_depth: int) -> int:
        """
        Computes the consensus base and conservation at every position.

        Conservation is the share of the consensus base, or 0 where the depth is below ``min_depth``.
        Ties between bases go to the first in A, C, G, T order.

        Returns:
            The number of positions with non-zero conservation.
        """
        depth = self.depth
        self.consensus = np.argmax(self.counts, axis=0).astype(np.uint8)
        peak = self.counts.max(axis=0)
        supported = depth >= max(min_depth, 1)
        self.conservation = np.zeros(len(self), dtype=np.float32)
        self.conservation[supported] = peak[supported] / depth[supported]
        return int(np.count_nonzero(self.conservation))

    def shares(self, pos: int) -> np.ndarray:
        """Returns the share of the depth taken by each base at ``pos``."""
        column = self.counts[:, pos]
        total = column.sum()
        return column / total if total else np.zeros(len(Nucleotide))

    def consensus_string(self, start: int, end: int) -> str:
        """The consensus between ``start`` and ``end`` inclusive."""
        return spell(self.consensus[start:end + 1])

    def refine_zone(self, start: int, end: int, cutoff: float, min_support: int = 0) -> tuple[int, int]:
        """
        Moves the zone boundaries to the widest span supported at high conservation.

        Each boundary first contracts while the position just outside it is below ``cutoff``, then both
        expand while the adjacent outside position is at or above it. Contraction is skipped when fewer than
        ``min_support`` positions carry any conservation.

        Returns:
            The refined ``(start, end)``, inclusive.
        """
        cons = self.conservation
        last = len(self) - 1
        if np.count_nonzero(cons) >= min_support:
            while 0 < start < end and cons[start - 1] < cutoff: start += 1
            while start < end < last and cons[end + 1] < cutoff: end -= 1
        while start > 0 and cons[start - 1] >= cutoff: start -= 1
        while end < last and cons[end + 1] >= cutoff: end += 1
        return start, end

    def render(self, start: int, end: int, flank: int = 4) -> str:
        """
        Tabulates conservation, base counts and consensus around a zone.

        Zone boundaries are marked with ``|``.
        """
        lo, hi = max(start - flank, 0), min(end + flank, len(self) - 1)

        def row(label, values):
            cells = []
            for i, v in zip(range(lo, hi + 1), values):
                if i == start: cells.append('|')
                cells.append(v)
                if i == end: cells.append('|')
            return f"{label}, " + ', '.join(cells)

        lines = [row('%', [f'{c:.2f}' for c in self.conservation[lo:hi + 1]])]
        lines.extend(row(n.char, [str(c) for c in self.counts[n, lo:hi + 1]]) for n in Nucleotide)
        lines.append(row('$', list(self.consensus_string(lo, hi))))
        return '\n'.join(lines)


class GroupConsensus(NamedTuple):
    """
    The outcome of the consensus step for one group.

    Attributes:
        sequence: The consensus over the zone (up to the collapse position when collapsed).
        zone_start: First zone position in the coverage frame.
        zone_end: Last zone position in the coverage frame.
        offsets: Frame position of each placed member token.
        collapse_pos: Frame position of a confirmed collapse, or ``None``.
        collapse_options: 4-slot boolean array of the bases to split on (indexed by ``Nucleotide``).
        master: Token of the master sequence.
        coverage: The coverage matrix the consensus was called from.
    """
    sequence: str
    zone_start: int
    zone_end: int
    offsets: dict[int, int]
    collapse_pos: Optional[int] = None
    collapse_options: Optional[np.ndarray] = None
    master: Optional[int] = None
    coverage: Optional[CoverageMatrix] = None

    def report(self, flank: int = 4) -> str:
        """Tabulates the coverage around the zone, see :meth:`CoverageMatrix.render`."""
        if self.coverage is None: return ''
        return self.coverage.render(self.zone_start, self.zone_end, flank)

    @property
    def collapsed(self) -> bool: return self.collapse_pos is not None

    @property
    def collapse_bases(self) -> str:
        if self.collapse_options is None: return ''
        return spell(np.flatnonzero(self.collapse_options))


class ConsensusBuilder:
    """
    Builds the coverage frame of a group and calls its consensus.

    The master variant is anchored at a fixed fraction of the frame; every other member is placed with
    the offset aligner. Members that cannot be placed are removed from the group with their reads.

    Args:
        store: The string store.
        registry: The read registry.
        aligner: Places members against the master.
        frame_length: Number of positions in the coverage frame.
        start_fraction: Where in the frame the master is anchored.
        min_read_depth: Minimum depth for a position to carry conservation.
        min_zone_support: Positions with conservation needed before the zone may contract.
        zone_cutoff: Conservation needed to extend the zone.
        collapse_cutoff: Conservation at or above which the consensus base is accepted outright.
        min_base_share: Share of the depth a base needs to count as a collapse option.
    """
    __slots__ = ('store', 'registry', 'aligner', 'frame_length', 'start_fraction', 'min_read_depth',
                 'min_zone_support', 'zone_cutoff', 'collapse_cutoff', 'min_base_share')

    def __init__(self, store: StringStore, registry: ReadRegistry, aligner: OffsetAligner, frame_length: int,
                 start_fraction: float = 0.3, min_read_depth: int = 3, zone_cutoff: float = 0.55,
                 collapse_cutoff: float = 0.75, min_base_share: float = 0.30, min_zone_support: int = 2):
        self.store = store
        self.registry = registry
        self.aligner = aligner
        self.frame_length = frame_length
        self.start_fraction = start_fraction
        self.min_read_depth = min_read_depth
        self.min_zone_support = min_zone_support
        self.zone_cutoff = zone_cutoff
        self.collapse_cutoff = collapse_cutoff
        self.min_base_share = min_base_share

    def build(self, group: ClusterGroup) -> Optional[GroupConsensus]:
        """
        Runs placement, coverage and consensus calling for one group.

        Returns:
            The consensus, or ``None`` if the group has no master.

        Raises:
            CoverageError: If a read falls outside the coverage frame.
        """
        if (master := find_master(group, self.store)) is None: return None
        master_token, master_seq = master
        coverage = CoverageMatrix(self.frame_length, group.gid)
        offsets = {master_token: int(self.frame_length * self.start_fraction)}
        zone_start = offsets[master_token]
        zone_end = zone_start + len(master_seq) - 1

        for read in self.registry.get(master_token):
            if (span := read.first_full_length(len(master_seq))) is None: continue
            coverage.add_read(read.seq, offsets[master_token] - span[0])

        self._place_members(group, master_token, master_seq, offsets, coverage)

        coverage.call(self.min_read_depth)
        zone_start, zone_end = coverage.refine_zone(zone_start, zone_end, self.zone_cutoff, self.min_zone_support)
        return self._classify(group, coverage, offsets, zone_start, zone_end, master_token)

    def _place_members(self, group: ClusterGroup, master_token: int, master_seq: str, offsets: dict[int, int],
                       coverage: CoverageMatrix):
        unplaced = []
        for token in group.tokens:
            if token == master_token: continue
            seq = self.store.get_string(token)
            placement = self.aligner.place(master_seq, seq, token)
            if placement.failed:
                unplaced.append(token)
                continue
            if placement.reversed:
                token, seq = self._flip_member(group, token, seq)
            offsets[token] = offsets[master_token] + placement.offset
            for read in self.registry.get(token):
                for start, _ in read.full_length_spans(len(seq)):
                    coverage.add_read(read.seq, offsets[token] - start)

        for token in unplaced:
            group.remove(token)
            self.registry.discard(token)

    def _flip_member(self, group: ClusterGroup, token: int, seq: str) -> tuple[int, str]:
        """Moves a member onto the master's strand under a freshly minted token."""
        for read in self.registry.get(token): read.reverse_complement()
        seq = reverse_complement(seq)
        new_token = self.store.add_string(seq)
        if token in self.registry: self.registry.move(token, new_token)
        group.replace(token, new_token)
        return new_token, seq

    def _classify(self, group: ClusterGroup, coverage: CoverageMatrix, offsets: dict[int, int], zone_start: int,
                  zone_end: int, master_token: int) -> GroupConsensus:
        bases = []
        for pos in range(zone_start, zone_end + 1):
            if coverage.conservation[pos] >= self.collapse_cutoff:
                bases.append(Nucleotide(coverage.consensus[pos]).char)
                continue
            options = coverage.shares(pos) >= self.min_base_share
            if np.count_nonzero(options) >= 2:
                confirmed = self._confirm_options(group, offsets, pos, options)
                if np.count_nonzero(confirmed) >= 2:
                    return GroupConsensus(''.join(bases), zone_start, zone_end, offsets, pos, confirmed,
                                          master_token, coverage)
            bases.append(Nucleotide(coverage.consensus[pos]).char)
        return GroupConsensus(''.join(bases), zone_start, zone_end, offsets, master=master_token,
                              coverage=coverage)

    def _confirm_options(self, group: ClusterGroup, offsets: dict[int, int], pos: int,
                         options: np.ndarray) -> np.ndarray:
        """Keeps the options seen in the member sequences themselves at ``pos``."""
        confirmed = np.zeros(len(Nucleotide), dtype=bool)
        for token in group:
            seq = self.store.get_string(token)
            if (offset := offsets.get(token)) is None:
                raise ConsistencyError(f'Variant {seq} ({token}) in group {group.gid} has no offset')
            if offset <= pos < offset + len(seq):
                if (base := Nucleotide.lookup(seq[pos - offset])) is not None and options[base]:
                    confirmed[base] = True
        return confirmed


# Functions ------------------------------------------------------------------------------------------------------------
def find_master(group: ClusterGroup, store: StringStore) -> Optional[tuple[int, str]]:
    """
    Picks the longest variant of a group as the alignment reference.

    Ties keep the first member seen. Warns and returns ``None`` for an empty group.

    Returns:
        ``(token, sequence)`` of the master, or ``None``.
    """
    best = None
    for token in group:
        seq = store.get_string(token)
        if best is None or len(seq) > len(best[1]): best = (token, seq)
    if best is None: warn(f'Could not identify a master variant for empty group {group.gid}', RejectionWarning)
    return best


def frame_length(max_read_length: int, multiplier: int = 4, minimum: int = 1200) -> int:
    """The coverage frame length: the larger of ``multiplier`` read lengths and ``minimum``."""
    return max(multiplier * max_read_length, minimum)
