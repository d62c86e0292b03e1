import numpy as np
import pytest
from drlib import PlacementWarning
from drlib.containers import ReadAnnotation, ReadRegistry
from drlib.core.alphabet import encode, reverse_complement
from drlib.engines.pairwise import (ScoreMatrix, LocalAligner, OffsetAligner, Placement, AlignmentError, UNPLACED)


class TestScoreMatrix:
    def test_build(self):
        m = ScoreMatrix.build(match=1, mismatch=-3)
        assert m.shape == (5, 5)
        assert m[0, 0] == 1
        assert m[0, 1] == -3
        assert m[4, 0] == 0
        assert m[2, 4] == 0

    def test_invalid_shape(self):
        with pytest.raises(AlignmentError, match="5x5"):
            ScoreMatrix(np.zeros((4, 4)))


class TestLocalAligner:
    def test_self_alignment(self):
        res = LocalAligner().align('AAAACCCCGGGG', 'AAAACCCCGGGG')
        assert res.score == 12
        assert (res.query_begin, res.query_end) == (0, 11)
        assert (res.target_begin, res.target_end) == (0, 11)
        assert res.offset == 0

    def test_offset(self):
        res = LocalAligner().align('ACGTTGCA', 'GGACGTTGCAGG')
        assert res.score == 8
        assert res.offset == 2
        assert res.target_end == 9

    def test_mismatch_is_bridged(self):
        res = LocalAligner().align('ACGTTGCAACGTTGCA', 'ACGTTGCATCGTTGCA')
        assert res.score == 12
        assert (res.query_begin, res.query_end) == (0, 15)

    def test_gap_is_opened(self):
        # One extra base in the target, then one in the query
        res = LocalAligner().align('ACGTTGCAACGTTGCA', 'ACGTTGCAGACGTTGCA')
        assert res.score == 11
        assert (res.query_begin, res.query_end, res.target_begin, res.target_end) == (0, 15, 0, 16)
        res = LocalAligner().align('ACGTTGCAGACGTTGCA', 'ACGTTGCAACGTTGCA')
        assert res.score == 11
        assert (res.query_begin, res.query_end, res.target_begin, res.target_end) == (0, 16, 0, 15)

    def test_encoded_input(self):
        aligner = LocalAligner()
        assert aligner.align(encode('ACGTTGCA'), 'GGACGTTGCAGG') == aligner.align('ACGTTGCA', 'GGACGTTGCAGG')

    def test_no_similarity(self):
        res = LocalAligner().align('AAAA', 'CCCC')
        assert res.score == 0

    def test_empty(self):
        with pytest.raises(AlignmentError, match="empty"):
            LocalAligner().align('', 'ACGT')


class TestOffsetAligner:
    def test_self_placement(self):
        placement = OffsetAligner(LocalAligner(), ReadRegistry()).place('AAAACCCCGGGG', 'AAAACCCCGGGG', 0)
        assert placement == Placement(0, False, 12)
        assert not placement.failed

    def test_forward_offset(self):
        placement = OffsetAligner(LocalAligner(), ReadRegistry()).place('TTAAAACCCCGGGG', 'AAAACCCCGGGG', 0)
        assert placement == Placement(2, False, 12)

    def test_reversed(self):
        master = 'GATTACAGGCTTCAAG'
        placement = OffsetAligner(LocalAligner(), ReadRegistry()).place(master, reverse_complement(master), 0)
        assert placement == Placement(0, True, 16)

    def test_tie_without_context(self):
        aligner = OffsetAligner(LocalAligner(), ReadRegistry())
        with pytest.warns(PlacementWarning, match="tie"):
            placement = aligner.place('GGAATTGG', 'AATT', 0)
        assert placement.failed
        assert placement.offset == UNPLACED

    def test_tie_with_reads_too_close_to_ends(self):
        registry = ReadRegistry()
        registry.set(0, [ReadAnnotation('CAATTGCC', [1, 4]), ReadAnnotation('TTGCAATT', [4, 7])])
        with pytest.warns(PlacementWarning, match="no read occurrence can be extended"):
            placement = OffsetAligner(LocalAligner(), registry).place('GGAATTGG', 'AATT', 0)
        assert placement.offset == UNPLACED

    def test_tie_persists_with_read_context(self):
        registry = ReadRegistry()
        # The extended window GCAATTGC is its own reverse complement
        registry.add(0, ReadAnnotation('AGCAATTGCA', [3, 6]))
        with pytest.warns(PlacementWarning, match="extended variant GCAATTGC still ties"):
            placement = OffsetAligner(LocalAligner(), registry).place('GGAATTGG', 'AATT', 0)
        assert placement.failed

    def test_tie_broken_by_read_context(self):
        registry = ReadRegistry()
        registry.add(0, ReadAnnotation('GCAATTGA', [2, 5]))
        placement = OffsetAligner(LocalAligner(), registry).place('TTGCAATTGACC', 'AATT', 0)
        assert placement == Placement(4, False, 8)

    def test_below_min_score(self):
        aligner = OffsetAligner(LocalAligner(), ReadRegistry(), min_score=100)
        with pytest.warns(PlacementWarning, match="forward score"):
            assert aligner.place('AAAACCCCGGGG', 'AAAACCCCGGGG', 0).failed
