"""Splitting of groups whose consensus hides more than one true repeat."""
from typing import Optional
from warnings import warn

import numpy as np

from drlib import RejectionWarning
from drlib.core.alphabet import Nucleotide, spell
from drlib.containers.cluster import GroupTable
from drlib.containers.reads import ReadAnnotation, ReadRegistry, StringStore
from drlib.engines.consensus import ConsistencyError, GroupConsensus
from drlib.engines.kmer import KmerTables, canonical_kmers
from drlib.utils.resources import GidCounter


# Classes --------------------------------------------------------------------------------------------------------------
class CollapseResolver:
    """
    Re-partitions a collapsed group into one child group per confirmed base.

    Members whose own sequence covers the collapse coordinate are routed by their base there. For the
    others, each read is decided by the first repeat occurrence whose matching in-read position holds one
    of the confirmed bases; a member whose reads disagree is split into a fresh token per base.

    Args:
        store: The string store.
        registry: The read registry.
        groups: The group table.
        gids: The shared GID counter.
        kmers: The shared k-mer tables.
        k: The k-mer size used to rebuild the children's frequency maps.
    """
    __slots__ = ('store', 'registry', 'groups', 'gids', 'kmers', 'k')

    def __init__(self, store: StringStore, registry: ReadRegistry, groups: GroupTable, gids: GidCounter,
                 kmers: KmerTables, k: int = 7):
        self.store = store
        self.registry = registry
        self.groups = groups
        self.gids = gids
        self.kmers = kmers
        self.k = k

    def resolve(self, gid: int, consensus: GroupConsensus) -> list[int]:
        """
        Splits group ``gid`` at its collapse position and retires it.

        Args:
            gid: The collapsed group.
            consensus: The consensus carrying the collapse position, options and member offsets.

        Returns:
            The GIDs of the non-empty child groups, in A, C, G, T order.

        Raises:
            ConsistencyError: If the consensus is not collapsed or a member has no offset.
        """
        if not consensus.collapsed: raise ConsistencyError(f'Group {gid} has no collapse to resolve')
        options = consensus.collapse_options
        pos = consensus.collapse_pos
        for token in self.groups[gid]:
            if token not in consensus.offsets:
                seq = self.store.get_string(token)
                raise ConsistencyError(f'Variant {seq} ({token}) in group {gid} has no offset')

        children = {Nucleotide(code): self.gids.next() for code in np.flatnonzero(options)}
        assignments: dict[Nucleotide, list[int]] = {base: [] for base in children}
        for token in self.groups.remove(gid):
            seq = self.store.get_string(token)
            offset = consensus.offsets[token]
            if offset <= pos < offset + len(seq):
                if (base := Nucleotide.lookup(seq[pos - offset])) in assignments:
                    assignments[base].append(token)
                else:
                    warn(f'Variant {seq} ({token}) in group {gid} has {seq[pos - offset]!r} at the collapse '
                         f'position, not one of {consensus.collapse_bases}', RejectionWarning)
                    self.registry.discard(token)
            else:
                self._split_by_reads(token, seq, pos - offset, options, assignments)

        kept = []
        for base, child in children.items():
            if not assignments[base]: continue
            group = self.groups.create(child)
            counts = self.kmers.counts_for(child)
            for token in assignments[base]:
                group.append(token)
                counts.update(canonical_kmers(self.store.get_string(token), self.k))
            kept.append(child)
        return kept

    def _split_by_reads(self, token: int, seq: str, shift: int, options: np.ndarray,
                        assignments: dict[Nucleotide, list[int]]):
        """Routes a member by the bases its reads carry ``shift`` positions from each occurrence start."""
        decided: dict[Nucleotide, list[ReadAnnotation]] = {}
        for read in self.registry.get(token):
            if (base := decision_base(read, shift, options)) is not None:
                decided.setdefault(base, []).append(read)

        if not decided:
            bases = spell(np.flatnonzero(options))
            warn(f"No reads of variant {seq} ({token}) show any of {bases} at the collapse position",
                 RejectionWarning)
            self.registry.discard(token)
        elif len(decided) == 1:
            assignments[next(iter(decided))].append(token)
        else:
            for base, reads in decided.items():
                new_token = self.store.add_string(seq)
                self.registry.set(new_token, reads)
                assignments[base].append(new_token)
            self.registry.discard(token)


# Functions ------------------------------------------------------------------------------------------------------------
def decision_base(read: ReadAnnotation, shift: int, options: np.ndarray) -> Optional[Nucleotide]:
    """
    Finds the base that decides which child a read belongs to.

    Args:
        read: The read.
        shift: Distance from a repeat occurrence start to the collapse position.
        options: 4-slot boolean array of the confirmed bases.

    Returns:
        The first option base found, or ``None``.
    """
    for start in read.starts():
        if 0 <= (i := start + shift) < len(read):
            if (base := Nucleotide.lookup(read.char_at(i))) is not None and options[base]: return base
    return None
