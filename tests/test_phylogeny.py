"""
Unit tests for distance computation and neighbor-joining trees.
"""

import math
import pytest
import sys
import os
import numpy as np

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from Bio import Phylo
from Bio.Align import MultipleSeqAlignment
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from seqtree.phylogeny import (
    MISSING,
    build_nj_tree,
    distance_matrix,
    draw_tree,
    encode_alignment,
    neighbor_join,
    write_tree
)


def make_msa(**sequences):
    return MultipleSeqAlignment([SeqRecord(Seq(seq), id=name) for name, seq in sequences.items()])


@pytest.fixture
def msa():
    """
    s2 differs from s1 by one transversion (C->A at the last site),
    s3 by one transition (A->G at the first site).
    """
    return make_msa(
        s1="ACGTACGTAC",
        s2="ACGTACGTAA",
        s3="GCGTACGTAC",
        s4="ACGTTCGAAC",
    )


class TestEncodeAlignment:
    """Test nucleotide encoding."""

    def test_codes(self):
        encoded = encode_alignment(make_msa(a="ACGTU", b="acgt-"))
        assert encoded.names == ["a", "b"]
        assert encoded.codes.dtype == np.uint8
        assert encoded.codes[0].tolist() == [0, 1, 2, 3, 3]
        assert encoded.codes[1].tolist() == [0, 1, 2, 3, MISSING]

    def test_ambiguity_codes_missing(self):
        encoded = encode_alignment(make_msa(a="NRYA"))
        assert encoded.codes[0].tolist() == [MISSING, MISSING, MISSING, 0]

    def test_unequal_lengths(self):
        records = [SeqRecord(Seq("ACGT"), id="a"), SeqRecord(Seq("ACG"), id="b")]
        with pytest.raises(ValueError):
            encode_alignment(records)

    def test_empty(self):
        with pytest.raises(ValueError):
            encode_alignment([])


class TestDistanceMatrix:
    """Test distance models."""

    def test_raw(self, msa):
        dm = distance_matrix(encode_alignment(msa), model="raw")
        assert dm["s1", "s2"] == pytest.approx(0.1)
        assert dm["s1", "s3"] == pytest.approx(0.1)
        assert dm["s2", "s3"] == pytest.approx(0.2)
        assert dm["s1", "s1"] == 0.0

    def test_count(self, msa):
        dm = distance_matrix(encode_alignment(msa), model="N")
        assert dm["s2", "s3"] == 2.0

    def test_jc69(self, msa):
        dm = distance_matrix(encode_alignment(msa), model="JC69")
        assert dm["s1", "s2"] == pytest.approx(-0.75 * math.log(1 - 4 * 0.1 / 3))

    def test_k80_transition(self, msa):
        dm = distance_matrix(encode_alignment(msa), model="K80")
        assert dm["s1", "s3"] == pytest.approx(-0.5 * math.log(0.8))

    def test_k80_transversion(self, msa):
        dm = distance_matrix(encode_alignment(msa), model="K80")
        expected = -0.5 * math.log(0.9) - 0.25 * math.log(0.8)
        assert dm["s1", "s2"] == pytest.approx(expected)

    def test_f81_equal_frequencies_matches_jc69(self):
        """Test that F81 reduces to JC69 with uniform base composition."""
        aln = make_msa(a="ACGTACGT", b="CAGTACGT", c="TCGAACGT")
        encoded = encode_alignment(aln)
        f81 = distance_matrix(encoded, model="F81")
        jc = distance_matrix(encoded, model="JC69")
        assert f81["a", "b"] == pytest.approx(jc["a", "b"])

    def test_pairwise_deletion(self):
        """Test that gaps only remove sites for the pair involved."""
        aln = make_msa(a="ACGTACGTAC", b="-CGTACGTAC", c="ACGTACGTAA")
        encoded = encode_alignment(aln)

        pairwise = distance_matrix(encoded, model="raw", pairwise_deletion=True)
        assert pairwise["a", "b"] == 0.0
        assert pairwise["a", "c"] == pytest.approx(1 / 10)

        complete = distance_matrix(encoded, model="raw", pairwise_deletion=False)
        assert complete["a", "c"] == pytest.approx(1 / 9)

    def test_no_shared_sites_is_nan(self):
        aln = make_msa(a="AC--", b="--GT", c="ACGT")
        dm = distance_matrix(encode_alignment(aln), model="raw")
        assert math.isnan(dm["a", "b"])

    def test_saturation_is_nan(self):
        aln = make_msa(a="AAAA", b="CCCC", c="AAAA")
        dm = distance_matrix(encode_alignment(aln), model="JC69")
        assert math.isnan(dm["a", "b"])

    def test_unknown_model(self, msa):
        with pytest.raises(ValueError):
            distance_matrix(encode_alignment(msa), model="TN93")


class TestTree:
    """Test neighbor joining and tree output."""

    def test_build_nj_tree(self, msa):
        tree = build_nj_tree(msa, model="K80")
        assert sorted(t.name for t in tree.get_terminals()) == ["s1", "s2", "s3", "s4"]

    def test_missing_values_rejected(self):
        aln = make_msa(a="AC--", b="--GT", c="ACGT")
        with pytest.raises(ValueError):
            build_nj_tree(aln)

    def test_needs_three_sequences(self):
        dm = distance_matrix(encode_alignment(make_msa(a="ACGT", b="ACGA")))
        with pytest.raises(ValueError):
            neighbor_join(dm)

    def test_complete_deletion_flag(self, msa):
        tree = build_nj_tree(msa, model="raw", pairwise_deletion=False)
        assert len(tree.get_terminals()) == 4

    def test_write_newick(self, msa, tmp_path):
        tree = build_nj_tree(msa)
        path = tmp_path / "tree.newick"
        assert write_tree(tree, str(path)) == 1
        reread = Phylo.read(str(path), "newick")
        assert sorted(t.name for t in reread.get_terminals()) == ["s1", "s2", "s3", "s4"]

    def test_draw_tree(self, msa, tmp_path):
        tree = build_nj_tree(msa)
        path = tmp_path / "tree.png"
        draw_tree(tree, str(path), title="test")
        assert path.exists()
        assert path.stat().st_size > 0

    def test_draw_tree_keeps_inner_names(self, msa, tmp_path):
        tree = build_nj_tree(msa)
        inner_names = [clade.name for clade in tree.get_nonterminals()]
        assert all(inner_names)
        draw_tree(tree, str(tmp_path / "tree.png"))
        assert [clade.name for clade in tree.get_nonterminals()] == inner_names
