"""Shared fixtures and test utilities for the split-merge test suite."""

import os
import sys
import pytest
import numpy as np

# Add splitmerge to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'splitmerge'))

import treebank
from grammar import ZERO_NOISE
from constraining_chart import ConstrainingChart
from utility import string_to_tree, binarize


# Five-leaf tree with unary chains in cells (0,5) and (3,4).
SAMPLE_TREE = "(top (a (a (a (c e) (c e)) (d f)) (b (b (d f)) (c f))))"

# The start symbol also occurs below the root.
TREE_WITH_INTERNAL_START = "(top (a (top (a c) (b c))) (b c))"

TREE_WITH_LONG_UNARY_CHAIN = (
    "(TOP (S (NP (NP (RB Not) (PDT all) (DT those)) (SBAR (WHNP (WP who)) (S (VP (VBD wrote))))) "
    "(VP (VBP oppose) (NP (DT the) (NNS changes))) (. .)))")

SMALL_CORPUS = [
    "(ROOT (S (NP (DT the) (NN dog)) (VP (VBD saw) (NP (DT a) (NN cat)))))",
    "(ROOT (S (NP (DT a) (NN cat)) (VP (VBD saw) (NP (DT the) (NN dog)))))",
    "(ROOT (S (NP (DT the) (NN cat)) (VP (VBD ran))))",
    "(ROOT (S (NP (PRP it)) (VP (VBD saw) (NP (DT the) (JJ big) (NN dog)))))",
    "(ROOT (S (NP (DT a) (JJ big) (NN dog)) (VP (VBD ran) (ADVP (RB away)))))",
    "(ROOT (S (NP (PRP it)) (VP (VBD ran))))",
]


@pytest.fixture
def sample_tree():
    return string_to_tree(SAMPLE_TREE)


@pytest.fixture
def markov0_grammar(sample_tree):
    """
    Grammar induced from the sample tree.

    top -> a (1)
    a -> a b (1/3), a -> a d (1/3), a -> c c (1/3)
    b -> b c (1/2), b -> d (1/2)
    c -> e (2/3), c -> f (1/3)
    d -> f (1)
    """
    return treebank.induce_grammar([sample_tree])


@pytest.fixture
def split_grammar(markov0_grammar):
    """The sample grammar split once without noise."""
    return markov0_grammar.split(ZERO_NOISE)


@pytest.fixture
def constraining_chart(sample_tree, markov0_grammar):
    return ConstrainingChart(sample_tree, markov0_grammar)


@pytest.fixture
def long_unary_tree():
    return binarize(string_to_tree(TREE_WITH_LONG_UNARY_CHAIN), 'right')


@pytest.fixture
def small_corpus_trees():
    return treebank.read_trees(SMALL_CORPUS, 'right')


@pytest.fixture
def rng():
    """Provide a seeded random number generator for reproducibility."""
    return np.random.default_rng(42)
