"""
Module for turning clustered repeat variants into true direct repeats.

The :class:`RepeatFinder` drives every group through master selection, placement, consensus calling and,
where the consensus turns out to be collapsed, splitting; accepted groups have the coordinates of all
their reads rewritten to the canonical repeat.

Examples:
    >>> context = ClusterContext()
    >>> finder = RepeatFinder(context, RepeatConfig(min_repeat_length=12))
"""
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple, Optional
from warnings import warn

from drlib import RejectionWarning, ConsistencyWarning
from drlib.core.alphabet import laurenize, is_low_complexity
from drlib.containers.cluster import GroupTable
from drlib.containers.reads import ReadAnnotation, ReadRegistry, SequenceStore, StringStore
from drlib.engines.collapse import CollapseResolver
from drlib.engines.consensus import ConsensusBuilder, ConsistencyError, GroupConsensus, frame_length
from drlib.engines.kmer import ClusteringError, KmerClusterer, KmerTables, kmer_max_frequency
from drlib.engines.pairwise import LocalAligner, OffsetAligner
from drlib.utils import Config
from drlib.utils.resources import GidCounter


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(slots=True, frozen=True, kw_only=True)
class RepeatConfig(Config):
    """
    Thresholds for clustering, placement and consensus calling.

    Attributes:
        min_repeat_length: Shortest accepted consensus.
        max_repeat_length: Longest accepted consensus.
        kmer_size: Window size for clustering and the abundance gate.
        min_cluster_membership: Shared k-mers needed for a candidate to join a group.
        min_read_depth: Minimum depth for a position to carry conservation.
        min_zone_support: Positions with conservation needed before the repeat zone may contract.
        zone_extension_cutoff: Conservation needed to extend the repeat zone.
        collapse_cutoff: Conservation at or above which the consensus base is accepted outright.
        min_base_share: Share of the depth a base needs to be a collapse option.
        kmer_abundance_cutoff: Largest share of the group's k-mer counts any consensus k-mer may take.
        low_complexity_threshold: Largest share of the consensus any single base may take.
        match: Alignment match score.
        mismatch: Alignment mismatch score.
        gap_open: Alignment gap-open penalty.
        gap_extend: Alignment gap-extension penalty.
        band_padding: Alignment band beyond the length difference of the sequences.
        min_alignment_score: Lowest alignment score that places a variant.
        tie_extension: Read context added on each side when breaking strand ties.
        read_length_multiplier: Coverage frame length in read lengths.
        min_array_length: Smallest coverage frame.
        array_start_fraction: Where in the frame the master is anchored.
    """
    min_repeat_length: int = 23
    max_repeat_length: int = 45
    kmer_size: int = 7
    min_cluster_membership: int = 6
    min_read_depth: int = 3
    min_zone_support: int = 2
    zone_extension_cutoff: float = 0.55
    collapse_cutoff: float = 0.75
    min_base_share: float = 0.30
    kmer_abundance_cutoff: float = 0.23
    low_complexity_threshold: float = 0.75
    match: int = 1
    mismatch: int = -3
    gap_open: int = 5
    gap_extend: int = 2
    band_padding: int = 50
    min_alignment_score: int = 0
    tie_extension: int = 2
    read_length_multiplier: int = 4
    min_array_length: int = 1200
    array_start_fraction: float = 0.3


@dataclass
class ClusterContext:
    """
    The state shared by every stage of a run.

    Attributes:
        store: Interned repeat variant strings.
        registry: Reads for each variant token.
        groups: The live groups.
        gids: The GID counter shared by clustering and splitting.
        kmers: The k-mer tables.
        true_repeats: Canonical repeat of every accepted group.
        reports: Coverage table around the repeat zone of every accepted group.
    """
    store: StringStore = field(default_factory=SequenceStore)
    registry: ReadRegistry = field(default_factory=ReadRegistry)
    groups: GroupTable = field(default_factory=GroupTable)
    gids: GidCounter = field(default_factory=GidCounter)
    kmers: KmerTables = field(default_factory=KmerTables)
    true_repeats: dict[int, str] = field(default_factory=dict)
    reports: dict[int, str] = field(default_factory=dict)

    def add_read(self, repeat: str, read: ReadAnnotation) -> int:
        """Files a read under the token of its repeat variant, interning the variant if it is new."""
        repeat = repeat.upper()
        try: token = self.store.get_token(repeat)
        except KeyError: token = self.store.add_string(repeat)
        self.registry.add(token, read)
        return token

    def add_reads(self, reads: Iterable[tuple[str, ReadAnnotation]]):
        for repeat, read in reads: self.add_read(repeat, read)


class RepeatResult(NamedTuple):
    """The products of a run, handed to the spacer-graph assembler."""
    true_repeats: dict[int, str]
    groups: dict[int, list[int]]
    non_redundant: list[str]
    reports: dict[int, str]


class RepeatFinder:
    """
    Clusters repeat variants and settles every group into a true repeat.

    Groups are processed from an explicit work queue; the children of a collapsed group are queued at the
    front in A, C, G, T order, so splits are settled depth first.

    Args:
        context: The shared run state.
        config: The thresholds; defaults to :class:`RepeatConfig`.

    Examples:
        >>> context = ClusterContext()
        >>> context.add_read('ACGTTGCAAC', ReadAnnotation('TTACGTTGCAACTT', [2, 11]))
        0
        >>> finder = RepeatFinder(context, RepeatConfig(kmer_size=4, min_cluster_membership=2))
        >>> finder.cluster()
        {0: 1}
    """
    def __init__(self, context: ClusterContext, config: RepeatConfig = None):
        self.context = context
        self.config = config or RepeatConfig()
        self.clusterer = KmerClusterer(context.groups, context.gids, context.kmers, self.config.kmer_size,
                                       self.config.min_cluster_membership)
        self.aligner = OffsetAligner(
            LocalAligner(match=self.config.match, mismatch=self.config.mismatch, gap_open=self.config.gap_open,
                         gap_extend=self.config.gap_extend, band_padding=self.config.band_padding),
            context.registry, self.config.min_alignment_score, self.config.tie_extension
        )
        self.resolver = CollapseResolver(context.store, context.registry, context.groups, context.gids,
                                         context.kmers, self.config.kmer_size)
        self._builder: Optional[ConsensusBuilder] = None

    def __repr__(self): return f"RepeatFinder({len(self.context.groups)} groups)"

    @property
    def builder(self) -> ConsensusBuilder:
        """The consensus builder, sized to the longest read currently registered."""
        if self._builder is None:
            cfg = self.config
            self._builder = ConsensusBuilder(
                self.context.store, self.context.registry, self.aligner,
                frame_length(self.context.registry.max_read_length(), cfg.read_length_multiplier,
                             cfg.min_array_length),
                cfg.array_start_fraction, cfg.min_read_depth, cfg.zone_extension_cutoff, cfg.collapse_cutoff,
                cfg.min_base_share, cfg.min_zone_support
            )
        return self._builder

    def cluster(self) -> dict[int, int]:
        """
        Clusters every registered variant, in token order.

        Variants shorter than the k-mer size are dropped with a :class:`RejectionWarning`.

        Returns:
            Token to GID for every clustered variant.
        """
        assigned = {}
        for token in sorted(self.context.registry.tokens()):
            seq = self.context.store.get_string(token)
            try:
                assigned[token] = self.clusterer.cluster(token, seq)
            except ClusteringError as e:
                warn(str(e), RejectionWarning)
                self.context.registry.discard(token)
        return assigned

    def non_redundant(self) -> list[str]:
        return self.clusterer.non_redundant_set(self.context.store.get_string)

    def find_consensus(self, gids: Iterable[int] = None) -> dict[int, str]:
        """
        Settles the given groups (all live groups by default) and any groups split from them.

        Returns:
            The canonical repeat of every group accepted so far.
        """
        self._builder = None
        queue = deque(list(self.context.groups) if gids is None else gids)
        while queue:
            queue.extendleft(reversed(self.process(queue.popleft())))
        return self.context.true_repeats

    def process(self, gid: int) -> list[int]:
        """
        Runs one group through consensus calling.

        Accepts the group, rejects it, or splits it. Consistency errors discard the group with a
        :class:`ConsistencyWarning`.

        Returns:
            The GIDs of any child groups that still need processing.
        """
        try:
            if (consensus := self.builder.build(self.context.groups[gid])) is None:
                self._discard(gid)
                return []
            if consensus.collapsed:
                return self.resolver.resolve(gid, consensus)
            if (reason := self.check(gid, consensus.sequence)) is not None:
                warn(f'Group {gid} rejected: consensus {consensus.sequence} {reason}', RejectionWarning)
                self._discard(gid)
                return []
            self._accept(gid, consensus)
        except ConsistencyError as e:
            warn(f'Group {gid} discarded: {e}', ConsistencyWarning)
            self._discard(gid)
        finally:
            self.context.kmers.release(gid)
        return []

    def check(self, gid: int, sequence: str) -> Optional[str]:
        """Returns why a consensus fails the quality gates, or ``None`` if it passes."""
        cfg = self.config
        if len(sequence) > cfg.max_repeat_length: return f'is longer than {cfg.max_repeat_length}'
        if len(sequence) < cfg.min_repeat_length: return f'is shorter than {cfg.min_repeat_length}'
        if is_low_complexity(sequence, cfg.low_complexity_threshold): return 'is low complexity'
        counts = self.context.kmers.group_counts.get(gid, {})
        if (freq := kmer_max_frequency(sequence, counts, cfg.kmer_size)) > cfg.kmer_abundance_cutoff:
            return f'contains highly abundant k-mers ({freq:.2f} > {cfg.kmer_abundance_cutoff})'
        return None

    def run(self) -> RepeatResult:
        """Clusters every variant, then settles every group."""
        self.cluster()
        non_redundant = self.non_redundant()
        self.find_consensus()
        return RepeatResult(dict(self.context.true_repeats), self.context.groups.as_dict(), non_redundant,
                            dict(self.context.reports))

    def _accept(self, gid: int, consensus: GroupConsensus):
        """Stores the canonical repeat and rewrites the reads of every member to it."""
        sequence = consensus.sequence
        canonical = laurenize(sequence)
        flip = canonical != sequence
        for token in self.context.groups[gid]:
            if (offset := consensus.offsets.get(token)) is None:
                raise ConsistencyError(f'Variant {token} in group {gid} has no offset')
            for read in self.context.registry.get(token):
                read.update_start_stops(offset - consensus.zone_start, len(sequence))
                if flip: read.reverse_complement()
        self.context.true_repeats[gid] = canonical
        self.context.reports[gid] = consensus.report()

    def _discard(self, gid: int):
        """Removes a group and the reads of its members."""
        if gid not in self.context.groups: return
        for token in self.context.groups.remove(gid): self.context.registry.discard(token)
