import warnings
from argparse import Namespace

import pytest
from drlib import DrlibWarning, RejectionWarning, ConsistencyWarning
from drlib.containers import ReadAnnotation
from drlib.core.alphabet import SYMBOLS
from drlib.engines.repeat import RepeatFinder, RepeatConfig, ClusterContext
from drlib.utils.resources import GidCounter, RESOURCES

SHORT_REPEATS = dict(min_repeat_length=12, kmer_size=3, min_cluster_membership=3, kmer_abundance_cutoff=1.0)


def make_reads(repeat, n, flank=10):
    """Reads with the repeat between flanks that vary from read to read."""
    reads = []
    for j in range(n):
        left = ''.join(SYMBOLS[(i + j) % 4] for i in range(flank))
        right = ''.join(SYMBOLS[(i + j + 2) % 4] for i in range(flank))
        reads.append(ReadAnnotation(left + repeat + right, [flank, flank + len(repeat) - 1], header=f'r{j}'))
    return reads


def make_context(*variants):
    context = ClusterContext()
    for repeat, n in variants:
        context.add_reads((repeat, read) for read in make_reads(repeat, n))
    return context


class TestConfig:
    def test_defaults(self):
        config = RepeatConfig()
        assert (config.min_repeat_length, config.max_repeat_length) == (23, 45)
        assert config.kmer_size == 7
        assert config.collapse_cutoff == 0.75
        assert (config.min_read_depth, config.min_zone_support) == (3, 2)

    def test_from_obj(self):
        config = RepeatConfig.from_obj(Namespace(kmer_size=5, min_read_depth=None, output='x'))
        assert config.kmer_size == 5
        assert config.min_read_depth == 3

    def test_from_dict(self):
        assert RepeatConfig.from_dict({'gap_open': 7, 'unknown': 1}).gap_open == 7


class TestResources:
    def test_gid_counter(self):
        gids = GidCounter()
        assert gids.last == 0
        assert (gids.next(), gids.next()) == (1, 2)
        assert gids.last == 2

    def test_has_module(self):
        assert RESOURCES.has_module('numpy')
        assert not RESOURCES.has_module('not_a_real_module_name')


class TestClusterContext:
    def test_add_read_interns(self):
        context = ClusterContext()
        assert context.add_read('acgt', ReadAnnotation('ACGT', [0, 3])) == 0
        assert context.add_read('ACGT', ReadAnnotation('ACGTA', [0, 3])) == 0
        assert context.add_read('TTTT', ReadAnnotation('TTTT', [0, 3])) == 1
        assert context.registry.num_reads() == 3


class TestGates:
    def test_length_boundaries(self):
        finder = RepeatFinder(ClusterContext(), RepeatConfig(**SHORT_REPEATS, max_repeat_length=14))
        assert 'shorter' in finder.check(1, 'AAAACCCCGGG')
        assert finder.check(1, 'AAAACCCCGGGG') is None
        assert finder.check(1, 'AAAACCCCGGGGTT') is None
        assert 'longer' in finder.check(1, 'AAAACCCCGGGGTTT')

    def test_low_complexity(self):
        finder = RepeatFinder(ClusterContext(), RepeatConfig(**SHORT_REPEATS))
        assert finder.check(1, 'AAAAAAAAAAAC') == 'is low complexity'

    def test_abundant_kmers(self):
        context = ClusterContext()
        context.kmers.counts_for(1).update(['AAA'] * 9 + ['CCC'])
        finder = RepeatFinder(context, RepeatConfig(min_repeat_length=12, kmer_size=3))
        assert 'highly abundant' in finder.check(1, 'AAAACCCCGGGG')
        assert finder.check(2, 'AAAACCCCGGGG') is None


class TestRepeatFinder:
    def test_short_candidates_dropped(self):
        context = ClusterContext()
        context.add_read('ACG', ReadAnnotation('TTACGTT', [2, 4]))
        with pytest.warns(RejectionWarning, match="shorter than"):
            assert RepeatFinder(context).cluster() == {}
        assert context.registry.num_reads() == 0

    def test_rejected_group_is_discarded(self):
        context = make_context(('AAAACCCCGGGG', 10))
        finder = RepeatFinder(context, RepeatConfig(**{**SHORT_REPEATS, 'min_repeat_length': 13}))
        with pytest.warns(RejectionWarning, match="Group 1 rejected: consensus AAAACCCCGGGG is shorter than 13"):
            result = finder.run()
        assert result.true_repeats == {}
        assert result.groups == {}
        assert len(context.registry) == 0

    def test_consistency_error_discards_group(self):
        context = make_context(('AAAACCCCGGGG', 10))
        config = RepeatConfig(**SHORT_REPEATS, min_array_length=1, read_length_multiplier=1,
                              array_start_fraction=0.0)
        with pytest.warns(ConsistencyWarning, match="Coverage index"):
            result = RepeatFinder(context, config).run()
        assert result.true_repeats == {}
        assert result.groups == {}

    def test_canonical_orientation(self):
        context = make_context(('CCCCGGGGTTTT', 10))
        result = RepeatFinder(context, RepeatConfig(**SHORT_REPEATS)).run()
        assert result.true_repeats == {1: 'AAAACCCCGGGG'}
        for read in context.registry.get(0):
            assert read.reversed
            assert read.start_stops == [10, 21]
            assert read.repeat(0) == 'AAAACCCCGGGG'

    def test_kmer_counts_released(self):
        context = make_context(('AAAACCCCGGGG', 10))
        RepeatFinder(context, RepeatConfig(**SHORT_REPEATS)).run()
        assert context.kmers.group_counts == {}


class TestScenarios:
    def test_minority_variant_is_absorbed(self):
        majority, variant = 'ACGTACGTACGTACGTACGTACG', 'ACGTATGTACGTACGTACGTACG'
        context = make_context((majority, 18), (variant, 2))
        finder = RepeatFinder(context, RepeatConfig(kmer_abundance_cutoff=1.0))
        with warnings.catch_warnings():
            warnings.simplefilter('error', DrlibWarning)
            result = finder.run()
        assert result.true_repeats == {1: majority}
        assert result.groups == {1: [0, 1]}
        assert result.non_redundant[:2] == [majority, variant]
        assert context.gids.last == 1
        assert context.registry.num_reads() == 20
        for token in (0, 1):
            for read in context.registry.get(token):
                assert read.start_stops == [10, 32]
                assert not read.reversed

    def test_collapsed_group_is_split(self):
        context = make_context(('AAAACCCCGGGG', 10), ('AAAATCCCGGGG', 10))
        finder = RepeatFinder(context, RepeatConfig(**SHORT_REPEATS))
        with warnings.catch_warnings():
            warnings.simplefilter('error', DrlibWarning)
            result = finder.run()
        assert result.true_repeats == {2: 'AAAACCCCGGGG', 3: 'AAAATCCCGGGG'}
        assert result.groups == {2: [0], 3: [1]}
        assert context.groups.is_retired(1)
        for read in context.registry.get(1):
            assert read.repeat(0) == 'AAAATCCCGGGG'

    def test_groups_processed_independently(self):
        context = make_context(('AAAACCCCGGGG', 10), ('TATATATAGAGA', 10))
        finder = RepeatFinder(context, RepeatConfig(**SHORT_REPEATS))
        result = finder.run()
        assert result.true_repeats == {1: 'AAAACCCCGGGG', 2: 'TATATATAGAGA'}
        assert sorted(result.reports) == [1, 2]
        assert result.reports[1].splitlines()[-1].count('|') == 2
