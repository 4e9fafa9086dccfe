"""Tests for utility.py - log arithmetic, tree reading and binarization."""

import math
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'splitmerge'))

from utility import (
    log_sum,
    string_to_tree,
    tree_to_string,
    collect_yield,
    count_leaves,
    unary_chain_height,
    max_unary_chain_height,
    binarize,
    unbinarize,
    strip_subcategories,
    split_symbol_name,
    is_preterminal,
    TreeFormatException,
)
from conftest import SAMPLE_TREE, TREE_WITH_LONG_UNARY_CHAIN


class TestLogSum:
    """Tests for log_sum."""

    def test_sum_of_probabilities(self):
        """log_sum adds probabilities in log space."""
        assert log_sum(math.log(0.25), math.log(0.5)) == pytest.approx(math.log(0.75))

    def test_symmetric(self):
        assert log_sum(-3.0, -1.0) == pytest.approx(log_sum(-1.0, -3.0))

    def test_negative_infinity(self):
        """-inf is the identity, and two -infs stay -inf rather than NaN."""
        assert log_sum(-math.inf, -2.0) == -2.0
        assert log_sum(-2.0, -math.inf) == -2.0
        assert log_sum(-math.inf, -math.inf) == -math.inf

    def test_large_difference(self):
        """No underflow to NaN for very different magnitudes."""
        assert log_sum(0.0, -1000.0) == pytest.approx(0.0)

    def test_nan_is_an_error(self):
        with pytest.raises(AssertionError):
            log_sum(math.nan, 0.0)


class TestTreeStringConversion:
    """Tests for string_to_tree and tree_to_string."""

    def test_lexical_tree(self):
        assert string_to_tree("(A word)") == ('A', 'word')

    def test_nested_tree(self):
        tree = string_to_tree("(S (A (A a) (B b)) (C c))")
        assert tree == ('S', ('A', ('A', 'a'), ('B', 'b')), ('C', 'c'))

    def test_unary_chain(self):
        tree = string_to_tree("(S (VP (V go)))")
        assert tree == ('S', ('VP', ('V', 'go')))

    def test_round_trip(self):
        """tree_to_string inverts string_to_tree."""
        assert tree_to_string(string_to_tree(SAMPLE_TREE)) == SAMPLE_TREE

    def test_penn_outer_bracket_removed(self):
        """An unlabelled outer bracket around one tree is dropped."""
        assert string_to_tree("( (S (A a) (B b)) )") == ('S', ('A', 'a'), ('B', 'b'))

    def test_unbalanced_brackets(self):
        with pytest.raises(TreeFormatException):
            string_to_tree("(S (A a) (B b)")

    def test_trailing_material(self):
        with pytest.raises(TreeFormatException):
            string_to_tree("(S (A a)) (B b)")

    def test_mixed_terminal_and_subtree(self):
        with pytest.raises(TreeFormatException):
            string_to_tree("(S a (B b))")

    def test_empty_node(self):
        with pytest.raises(TreeFormatException):
            string_to_tree("(S ())")

    def test_not_a_tree(self):
        with pytest.raises(TreeFormatException):
            string_to_tree("word")


class TestTreeMeasures:
    """Tests for yields, leaf counts and unary chain heights."""

    def test_collect_yield(self):
        assert collect_yield(string_to_tree(SAMPLE_TREE)) == ['e', 'e', 'f', 'f', 'f']

    def test_is_preterminal(self):
        tree = string_to_tree(SAMPLE_TREE)
        assert is_preterminal(('c', 'e'))
        assert not is_preterminal(tree)
        assert not is_preterminal(('b', ('d', 'f')))

    def test_count_leaves(self):
        assert count_leaves(string_to_tree(SAMPLE_TREE)) == 5

    def test_unary_chain_height(self):
        """The root of the sample tree heads one unary production."""
        tree = string_to_tree(SAMPLE_TREE)
        assert unary_chain_height(tree) == 1
        assert unary_chain_height(tree[1]) == 0
        assert unary_chain_height(('c', 'e')) == 0

    def test_max_unary_chain_height(self):
        """(S (VP (VBD wrote))) is the longest chain: two unary productions."""
        tree = string_to_tree(TREE_WITH_LONG_UNARY_CHAIN)
        assert max_unary_chain_height(tree) == 2


class TestBinarization:
    """Tests for binarize and unbinarize."""

    def test_right_binarization(self):
        tree = string_to_tree("(X (A a) (B b) (C c) (D d))")
        expected = ('X', ('A', 'a'), ('@X', ('B', 'b'), ('@X', ('C', 'c'), ('D', 'd'))))
        assert binarize(tree, 'right') == expected

    def test_left_binarization(self):
        tree = string_to_tree("(X (A a) (B b) (C c) (D d))")
        expected = ('X', ('@X', ('@X', ('A', 'a'), ('B', 'b')), ('C', 'c')), ('D', 'd'))
        assert binarize(tree, 'left') == expected

    def test_binary_tree_unchanged(self):
        tree = string_to_tree(SAMPLE_TREE)
        assert binarize(tree) == tree

    def test_unbinarize_inverts_binarize(self):
        tree = string_to_tree(TREE_WITH_LONG_UNARY_CHAIN)
        assert unbinarize(binarize(tree, 'right')) == tree
        assert unbinarize(binarize(tree, 'left')) == tree

    def test_unknown_direction(self):
        with pytest.raises(ValueError):
            binarize(string_to_tree(SAMPLE_TREE), 'middle')


class TestSubcategories:
    """Tests for split symbol names."""

    def test_split_symbol_name(self):
        assert split_symbol_name('NP_3') == ('NP', 3)
        assert split_symbol_name('NP') == ('NP', None)
        assert split_symbol_name('@S_12') == ('@S', 12)
        assert split_symbol_name('PRP_X') == ('PRP_X', None)

    def test_strip_subcategories(self):
        tree = ('top', ('a_1', ('c_0', 'e'), ('c_1', 'f')))
        assert strip_subcategories(tree) == ('top', ('a', ('c', 'e'), ('c', 'f')))
