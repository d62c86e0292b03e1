from collections import Counter
from itertools import combinations

import pytest
from drlib.containers import GroupTable
from drlib.core.alphabet import reverse_complement
from drlib.engines.kmer import (KmerClusterer, KmerTables, ClusteringError, canonical_kmers, remove_redundant,
                                includes_substring, kmer_max_frequency)
from drlib.utils.resources import GidCounter


def make_clusterer(k=3, min_membership=3):
    return KmerClusterer(GroupTable(), GidCounter(), KmerTables(), k=k, min_membership=min_membership)


class TestKmerClusterer:
    def test_invalid_k(self):
        with pytest.raises(ClusteringError, match="positive"):
            make_clusterer(k=0)

    def test_too_short(self):
        with pytest.raises(ClusteringError, match="shorter than"):
            make_clusterer(k=7).cluster(0, 'ACGT')

    def test_similar_variants_share_a_group(self):
        clusterer = make_clusterer()
        assert clusterer.cluster(0, 'AAAACCCCGGGG') == 1
        assert clusterer.cluster(1, 'AAAATCCCGGGG') == 1
        assert clusterer.groups[1].tokens == [0, 1]
        assert clusterer.groups.group_of(1) == 1

    def test_opposite_strand_joins(self):
        clusterer = make_clusterer()
        clusterer.cluster(0, 'AAAACCCCGGGG')
        assert clusterer.cluster(1, reverse_complement('AAAACCCCGGGG')) == 1

    def test_unrelated_variant_founds_group(self):
        clusterer = make_clusterer()
        clusterer.cluster(0, 'AAAACCCCGGGG')
        assert clusterer.cluster(1, 'TATATATAGAGA') == 2
        assert clusterer.gids.last == 2
        assert clusterer.tables.kmer_to_gid['ATA'] == 2

    def test_first_writer_keeps_kmers(self):
        clusterer = make_clusterer()
        clusterer.cluster(0, 'AAAACCCCGGGG')
        clusterer.cluster(1, 'AAAATCCCGGGG')
        # k-mers first seen in group 1 stay with group 1
        assert clusterer.tables.kmer_to_gid['AAA'] == 1
        assert clusterer.tables.kmer_to_gid['AAT'] == 1

    def test_group_counts(self):
        clusterer = make_clusterer()
        clusterer.cluster_all([(0, 'AAAACCCCGGGG'), (1, 'AAAATCCCGGGG')])
        counts = clusterer.tables.counts_for(1)
        assert counts['AAA'] == 4
        assert counts['CCC'] == 7
        clusterer.tables.release(1)
        assert 1 not in clusterer.tables.group_counts

    def test_non_redundant_set(self):
        strings = {0: 'AAAACCCCGGGG', 1: 'AAAACCCCGGGGT'}
        clusterer = make_clusterer()
        clusterer.cluster_all(strings.items())
        assert clusterer.non_redundant_set(strings.__getitem__) == ['AAAACCCCGGGG', 'CCCCGGGGTTTT']


class TestRedundancy:
    def test_remove_redundant(self):
        assert remove_redundant(['AACGTT', 'ACGT', 'GGGG']) == ['ACGT', 'GGGG']

    def test_reverse_complement_containment(self):
        assert includes_substring('AACC', 'TTGGTTT')
        assert remove_redundant(['TTGGTTT', 'AACC']) == ['AACC']

    def test_duplicates(self):
        assert remove_redundant(['ACGT', 'ACGT']) == ['ACGT']

    def test_no_retained_substrings(self):
        repeats = ['ACGTAC', 'GTACGTACC', 'CGTA', 'TTTTGGGA', 'TCCCAAAAC', 'GGGATTT', 'ACGTACGTAC']
        kept = remove_redundant(repeats)
        for a, b in combinations(kept, 2):
            assert not includes_substring(a, b)
            assert not includes_substring(b, a)


class TestKmerStatistics:
    def test_canonical_kmers(self):
        assert canonical_kmers('TTTT', 3) == ['AAA', 'AAA']

    def test_kmer_max_frequency(self):
        assert kmer_max_frequency('AAAC', Counter({'AAA': 3, 'AAC': 1}), 3) == pytest.approx(0.75)
        # Reverse-strand k-mers are counted under their canonical form
        assert kmer_max_frequency('GTTT', Counter({'AAA': 3, 'AAC': 1}), 3) == pytest.approx(0.75)
        assert kmer_max_frequency('AAAC', Counter(), 3) == 0.0
