"""Tests for fractional_count_grammar.py - expected count accumulation and the M-step."""

import math
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'splitmerge'))

from fractional_count_grammar import FractionalCountGrammar
from grammar import HashPackingFunction
from split_vocabulary import SplitVocabulary, SymbolSet


@pytest.fixture
def base_vocabulary():
    return SplitVocabulary(['top', 'NP', 'VP'])


@pytest.fixture
def lexicon():
    return SymbolSet(['the', 'dog', 'barks'])


@pytest.fixture
def counts(base_vocabulary, lexicon):
    """
    Counts over the split vocabulary top, NP_0, NP_1, VP_0, VP_1:

    top -> NP_0 VP_0 (3), top -> NP_1 VP_1 (1)
    NP_0 -> the (2), NP_0 -> dog (1)
    NP_1 -> dog (1)
    VP_0 -> barks (4)
    """
    vocabulary = base_vocabulary.split()
    c = FractionalCountGrammar(vocabulary, lexicon)
    c.increment_binary_count(0, 1, 3, 3.0)
    c.increment_binary_count(0, 2, 4)
    c.increment_lexical_count(1, 0, 2.0)
    c.increment_lexical_count(1, 1)
    c.increment_lexical_count(2, 1)
    c.increment_lexical_count(3, 2, 4.0)
    return c


class TestAccumulation:
    """Incrementing and reading counts."""

    def test_counts(self, counts):
        assert counts.binary_count(0, 1, 3) == pytest.approx(3.0)
        assert counts.binary_count(0, 2, 4) == pytest.approx(1.0)
        assert counts.lexical_count(1, 0) == pytest.approx(2.0)
        assert counts.binary_count(0, 1, 4) == 0.0
        assert counts.unary_count(1, 2) == 0.0

    def test_parent_counts(self, counts):
        assert counts.parent_count(0) == pytest.approx(4.0)
        assert counts.parent_count(1) == pytest.approx(3.0)
        assert counts.parent_count(4) == 0.0

    def test_repeated_increments(self, counts):
        counts.increment_unary_count(3, 4, 0.25)
        counts.increment_unary_log_count(3, 4, math.log(0.5))
        assert counts.unary_count(3, 4) == pytest.approx(0.75)
        assert counts.parent_count(3) == pytest.approx(4.75)

    def test_rule_counts(self, counts):
        assert counts.binary_rule_count() == 2
        assert counts.unary_rule_count() == 0
        assert counts.lexical_rule_count() == 4
        assert counts.total_rule_count() == 6

    def test_add(self, counts, lexicon):
        other = FractionalCountGrammar(counts.vocabulary, lexicon)
        other.increment_binary_count(0, 1, 3, 1.0)
        other.increment_unary_count(4, 3, 2.0)
        counts.add(other)
        assert counts.binary_count(0, 1, 3) == pytest.approx(4.0)
        assert counts.unary_count(4, 3) == pytest.approx(2.0)
        assert counts.parent_count(0) == pytest.approx(5.0)
        assert counts.parent_count(4) == pytest.approx(2.0)

    def test_zero_increment(self, counts):
        """A zero count adds nothing and stores no rule."""
        counts.increment_binary_count(0, 1, 4, 0.0)
        counts.increment_unary_count(1, 3, 0.0)
        counts.increment_lexical_log_count(4, 0, -math.inf)
        assert counts.binary_count(0, 1, 4) == 0.0
        assert (0, 1, 4) not in counts.binary_log_counts
        assert (1, 3) not in counts.unary_log_counts
        assert (4, 0) not in counts.lexical_log_counts
        assert 4 not in counts.parent_log_counts
        assert counts.parent_count(0) == pytest.approx(4.0)
        assert counts.total_rule_count() == 6
        counts.to_grammar().verify_probability_distribution()

    def test_add_mismatched_vocabulary(self, counts, base_vocabulary, lexicon):
        with pytest.raises(ValueError):
            counts.add(FractionalCountGrammar(base_vocabulary, lexicon))

    def test_str(self, counts):
        text = str(counts)
        assert "top -> NP_0 VP_0 3.0000" in text
        assert "VP_0 -> barks 4.0000" in text


class TestEstimation:
    """Turning counts into a grammar."""

    def test_relative_frequencies(self, counts):
        grammar = counts.to_grammar()
        assert grammar.binary_log_probability(0, 1, 3) == pytest.approx(math.log(3 / 4))
        assert grammar.binary_log_probability(0, 2, 4) == pytest.approx(math.log(1 / 4))
        assert grammar.lexical_log_probability(1, 0) == pytest.approx(math.log(2 / 3))
        assert grammar.lexical_log_probability(1, 1) == pytest.approx(math.log(1 / 3))
        assert grammar.lexical_log_probability(3, 2) == pytest.approx(0.0)
        grammar.verify_probability_distribution()

    def test_pruning(self, counts):
        """Rules below the threshold are dropped and the rest renormalised."""
        grammar = counts.to_grammar(math.log(0.3))
        assert grammar.binary_log_probability(0, 2, 4) == -math.inf
        assert grammar.binary_log_probability(0, 1, 3) == pytest.approx(0.0)
        assert grammar.lexical_log_probability(1, 1) == pytest.approx(math.log(1 / 3))
        grammar.verify_probability_distribution()

    def test_pruned_parent_counts(self, counts):
        pruned = counts.pruned(math.log(0.3))
        assert pruned.parent_count(0) == pytest.approx(3.0)
        assert pruned.binary_rule_count() == 1

    def test_packing_function_class(self, counts):
        grammar = counts.to_grammar(packing_function_class=HashPackingFunction)
        assert isinstance(grammar.packing_function, HashPackingFunction)


class TestSplitFraction:
    """Relative frequencies of sibling splits."""

    def test_observed_pair(self, counts):
        """NP_0 was counted three times, NP_1 once."""
        fractions = counts.log_split_fraction()
        assert len(fractions) == 5
        assert fractions[1] == pytest.approx(math.log(3 / 4))
        assert fractions[2] == pytest.approx(math.log(1 / 4))

    def test_one_sided_pair(self, counts):
        """VP_1 is never a parent."""
        fractions = counts.log_split_fraction()
        assert fractions[3] == pytest.approx(0.0)
        assert fractions[4] == -math.inf

    def test_unobserved_pair(self, base_vocabulary, lexicon):
        fractions = FractionalCountGrammar(base_vocabulary.split(), lexicon).log_split_fraction()
        assert fractions[0] == 0.0
        for i in range(1, 5):
            assert fractions[i] == pytest.approx(math.log(0.5))


class TestMergeToBase:
    """Summing split counts back to base symbols."""

    def test_merge_to_base(self, counts, base_vocabulary):
        merged = counts.merge_to_base()
        assert merged.vocabulary is base_vocabulary
        assert merged.binary_count(0, 1, 2) == pytest.approx(4.0)
        assert merged.lexical_count(1, 1) == pytest.approx(2.0)
        assert merged.lexical_count(1, 0) == pytest.approx(2.0)
        assert merged.parent_count(1) == pytest.approx(4.0)
        assert merged.binary_rule_count() == 1
