"""Tests for treebank.py - reading trees and inducing the Markov-0 grammar."""

import logging
import math
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'splitmerge'))

import treebank
from utility import string_to_tree
from conftest import SAMPLE_TREE, SMALL_CORPUS


class TestReadTrees:
    """Tests for read_trees and load_trees."""

    def test_read_and_binarize(self):
        trees = treebank.read_trees(["(S (A a) (B b) (C c))"])
        assert trees == [('S', ('A', 'a'), ('@S', ('B', 'b'), ('C', 'c')))]

    def test_left_binarization(self):
        trees = treebank.read_trees(["(S (A a) (B b) (C c))"], 'left')
        assert trees == [('S', ('@S', ('A', 'a'), ('B', 'b')), ('C', 'c'))]

    def test_no_binarization(self):
        trees = treebank.read_trees(["(S (A a) (B b) (C c))"], None)
        assert trees == [('S', ('A', 'a'), ('B', 'b'), ('C', 'c'))]

    def test_skips_blank_and_comment_lines(self):
        trees = treebank.read_trees(["", "# comment", SAMPLE_TREE, "   "])
        assert len(trees) == 1

    def test_malformed_tree_logged_and_skipped(self, caplog):
        with caplog.at_level(logging.WARNING):
            trees = treebank.read_trees([SAMPLE_TREE, "(S (A a)", SAMPLE_TREE])
        assert len(trees) == 2
        assert "line 2" in caplog.text

    def test_load_trees(self, tmp_path):
        path = tmp_path / "corpus.txt"
        path.write_text("\n".join(SMALL_CORPUS) + "\n")
        trees = treebank.load_trees(str(path))
        assert len(trees) == len(SMALL_CORPUS)
        assert trees[0][0] == 'ROOT'


class TestInduction:
    """Tests for induce_count_grammar and induce_grammar."""

    def test_vocabulary_order(self, sample_tree):
        """Start symbol first, then symbols in order of first observation."""
        counts = treebank.induce_count_grammar([sample_tree])
        assert counts.vocabulary.symbols == ['top', 'a', 'c', 'd', 'b']
        assert counts.lexicon.symbols == ['e', 'f']

    def test_counts(self, sample_tree):
        counts = treebank.induce_count_grammar([sample_tree])
        index = counts.vocabulary.index
        assert counts.binary_count(index('a'), index('a'), index('b')) == pytest.approx(1)
        assert counts.lexical_count(index('c'), counts.lexicon.index('e')) == pytest.approx(2)
        assert counts.lexical_count(index('d'), counts.lexicon.index('f')) == pytest.approx(2)
        assert counts.unary_count(index('b'), index('d')) == pytest.approx(1)
        assert counts.parent_count(index('a')) == pytest.approx(3)

    def test_corpus_grammar(self, small_corpus_trees):
        grammar = treebank.induce_grammar(small_corpus_trees)
        grammar.verify_probability_distribution()
        index = grammar.vocabulary.index
        assert grammar.vocabulary.start_symbol == 'ROOT'
        assert grammar.unary_log_probability(index('ROOT'), index('S')) == pytest.approx(0.0)
        assert grammar.unary_log_probability(index('NP'), index('PRP')) == pytest.approx(math.log(2 / 9))
        assert grammar.unary_log_probability(index('VP'), index('VBD')) == pytest.approx(math.log(2 / 6))
        assert '@NP' in grammar.vocabulary

    def test_empty_treebank(self):
        with pytest.raises(ValueError):
            treebank.induce_count_grammar([])

    def test_unbinarized_tree(self):
        with pytest.raises(ValueError):
            treebank.induce_count_grammar([string_to_tree("(S (A a) (B b) (C c))")])
