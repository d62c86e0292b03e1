"""K-mer clustering of candidate direct repeats and removal of redundant variants."""
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from drlib.core.alphabet import cut_kmers, laurenize, reverse_complement
from drlib.containers.cluster import GroupTable
from drlib.utils.resources import GidCounter


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class ClusteringError(Exception):
    """Raised when a candidate repeat cannot be clustered."""


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass
class KmerTables:
    """
    The k-mer state shared across clustering calls.

    Attributes:
        kmer_to_gid: Canonical k-mer to the GID that first registered it. Append-only.
        group_counts: Per-group canonical k-mer frequencies, accumulated over every member.
    """
    kmer_to_gid: dict[str, int] = field(default_factory=dict)
    group_counts: dict[int, Counter] = field(default_factory=dict)

    def counts_for(self, gid: int) -> Counter:
        return self.group_counts.setdefault(gid, Counter())

    def release(self, gid: int):
        """Discards a group's frequency map once its consensus has been settled."""
        self.group_counts.pop(gid, None)


class KmerClusterer:
    """
    Assigns candidate repeats to groups using shared canonical k-mers.

    A candidate joins the first existing group for which at least ``min_membership`` of its k-mers are
    already registered; k-mers are visited left to right and the first group to reach the threshold wins.
    Otherwise the candidate founds a new group.

    Args:
        groups: The group table receiving the assignments.
        gids: The shared GID counter.
        tables: The shared k-mer tables.
        k: The k-mer window size.
        min_membership: Shared k-mers needed to join a group.

    Examples:
        >>> clusterer = KmerClusterer(GroupTable(), GidCounter(), KmerTables(), k=4, min_membership=2)
        >>> clusterer.cluster(0, 'ACGTTGCAAC')
        1
    """
    __slots__ = ('groups', 'gids', 'tables', 'k', 'min_membership')

    def __init__(self, groups: GroupTable, gids: GidCounter, tables: KmerTables, k: int = 7,
                 min_membership: int = 6):
        if k < 1: raise ClusteringError('The k-mer size must be positive')
        self.groups = groups
        self.gids = gids
        self.tables = tables
        self.k = k
        self.min_membership = min_membership

    def cluster(self, token: int, seq: str) -> int:
        """
        Places one candidate into a group.

        Args:
            token: The candidate's token.
            seq: The candidate's sequence.

        Returns:
            The GID of the group the candidate was added to.

        Raises:
            ClusteringError: If the candidate is shorter than the k-mer window.
        """
        if len(seq) < self.k:
            raise ClusteringError(f'Candidate {seq!r} ({token}) is shorter than the k-mer size {self.k}')
        kmer_to_gid = self.tables.kmer_to_gid
        homeless = []
        hits = Counter()
        group = None
        kmers = canonical_kmers(seq, self.k)
        for kmer in kmers:
            if (owner := kmer_to_gid.get(kmer)) is None:
                homeless.append(kmer)
            elif group is None:
                hits[owner] += 1
                if hits[owner] >= self.min_membership and owner in self.groups: group = owner

        if group is None:
            group = self.gids.next()
            self.groups.create(group)

        self.groups[group].append(token)
        for kmer in homeless: kmer_to_gid.setdefault(kmer, group)
        self.tables.counts_for(group).update(kmers)
        return group

    def cluster_all(self, items: Iterable[tuple[int, str]]) -> dict[int, int]:
        """Clusters ``(token, sequence)`` pairs in order, returning token to GID."""
        return {token: self.cluster(token, seq) for token, seq in items}

    def non_redundant_set(self, get_string) -> list[str]:
        """
        Builds the corpus-wide set of non-redundant variants used for singleton recruitment.

        Args:
            get_string: Resolves a token to its sequence.

        Returns:
            For every group, its non-redundant variants followed by their reverse complements.
        """
        out = []
        for gid in self.groups:
            kept = remove_redundant([get_string(t) for t in self.groups[gid]])
            out.extend(kept)
            out.extend(reverse_complement(s) for s in kept)
        return out


# Functions ------------------------------------------------------------------------------------------------------------
def canonical_kmers(seq: str, k: int) -> list[str]:
    """Returns the strand-independent form of every k-mer of ``seq``, left to right."""
    return [laurenize(kmer) for kmer in cut_kmers(seq, k)]


def includes_substring(shorter: str, longer: str) -> bool:
    """True if ``shorter`` occurs in ``longer`` on either strand."""
    return shorter in longer or reverse_complement(shorter) in longer


def remove_redundant(repeats: Iterable[str]) -> list[str]:
    """
    Drops variants that contain a shorter variant of the same group.

    Args:
        repeats: The variants of one group.

    Returns:
        The remaining variants, shortest first.

    Examples:
        >>> remove_redundant(['AACGTT', 'ACGT', 'GGGG'])
        ['ACGT', 'GGGG']
    """
    ordered = sorted(repeats, key=len)
    redundant = [False] * len(ordered)
    for i, shorter in enumerate(ordered):
        if redundant[i]: continue
        for j in range(i + 1, len(ordered)):
            if not redundant[j] and includes_substring(shorter, ordered[j]): redundant[j] = True
    return [s for s, r in zip(ordered, redundant) if not r]


def kmer_max_frequency(seq: str, counts: Counter, k: int) -> float:
    """
    Returns the largest share of a group's k-mer counts taken by any canonical k-mer of ``seq``.

    Args:
        seq: The consensus sequence.
        counts: The group's canonical k-mer frequencies.
        k: The k-mer window size.
    """
    total = sum(counts.values())
    if not total or len(seq) < k: return 0.0
    return max(counts.get(laurenize(kmer), 0) for kmer in cut_kmers(seq, k)) / total
