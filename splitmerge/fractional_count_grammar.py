#fractional_count_grammar.py
#
# Accumulates expected (fractional) rule counts during the E-step of EM and
# turns them into rule probabilities for the M-step.
#
# Counts are stored as log counts in flat dictionaries keyed by index tuples;
# a missing key is a zero count. Partial accumulators built by different
# workers are combined with add().

import math

import numpy as np

from grammar import Grammar, SimplePackingFunction
from utility import LOG_ONE_HALF, log_sum


def _increment(counts, key, log_increment):
	# Zero counts are never stored.
	if log_increment == -math.inf:
		return
	if key in counts:
		counts[key] = log_sum(counts[key], log_increment)
	else:
		counts[key] = log_increment


class FractionalCountGrammar:

	def __init__(self, vocabulary, lexicon):
		self.vocabulary = vocabulary
		self.lexicon = lexicon
		## (parent, left, right) -> log count
		self.binary_log_counts = {}
		## (parent, child) -> log count
		self.unary_log_counts = {}
		## (parent, terminal) -> log count
		self.lexical_log_counts = {}
		## parent -> log of the summed count of all of its rules
		self.parent_log_counts = {}

	def increment_binary_log_count(self, parent, left, right, log_increment):
		_increment(self.binary_log_counts, (parent, left, right), log_increment)
		_increment(self.parent_log_counts, parent, log_increment)

	def increment_unary_log_count(self, parent, child, log_increment):
		_increment(self.unary_log_counts, (parent, child), log_increment)
		_increment(self.parent_log_counts, parent, log_increment)

	def increment_lexical_log_count(self, parent, word, log_increment):
		_increment(self.lexical_log_counts, (parent, word), log_increment)
		_increment(self.parent_log_counts, parent, log_increment)

	def increment_binary_count(self, parent, left, right, increment=1.0):
		if increment <= 0.0:
			return
		self.increment_binary_log_count(parent, left, right, math.log(increment))

	def increment_unary_count(self, parent, child, increment=1.0):
		if increment <= 0.0:
			return
		self.increment_unary_log_count(parent, child, math.log(increment))

	def increment_lexical_count(self, parent, word, increment=1.0):
		if increment <= 0.0:
			return
		self.increment_lexical_log_count(parent, word, math.log(increment))

	def binary_count(self, parent, left, right):
		return math.exp(self.binary_log_counts.get((parent, left, right), -math.inf))

	def unary_count(self, parent, child):
		return math.exp(self.unary_log_counts.get((parent, child), -math.inf))

	def lexical_count(self, parent, word):
		return math.exp(self.lexical_log_counts.get((parent, word), -math.inf))

	def parent_count(self, parent):
		return math.exp(self.parent_log_counts.get(parent, -math.inf))

	def add(self, other):
		"""Add the counts of another accumulator over the same vocabulary."""
		if len(other.vocabulary) != len(self.vocabulary) or len(other.lexicon) != len(self.lexicon):
			raise ValueError("Cannot add counts over a different vocabulary")
		for key, lc in other.binary_log_counts.items():
			_increment(self.binary_log_counts, key, lc)
		for key, lc in other.unary_log_counts.items():
			_increment(self.unary_log_counts, key, lc)
		for key, lc in other.lexical_log_counts.items():
			_increment(self.lexical_log_counts, key, lc)
		for key, lc in other.parent_log_counts.items():
			_increment(self.parent_log_counts, key, lc)
		return self

	def pruned(self, minimum_rule_log_probability):
		"""
		Copy without the rules whose relative frequency is below
		exp(minimum_rule_log_probability). Parent counts cover only the
		remaining rules.
		"""
		result = FractionalCountGrammar(self.vocabulary, self.lexicon)
		for (p, l, r), lc in self.binary_log_counts.items():
			if lc - self.parent_log_counts[p] >= minimum_rule_log_probability:
				result.increment_binary_log_count(p, l, r, lc)
		for (p, c), lc in self.unary_log_counts.items():
			if lc - self.parent_log_counts[p] >= minimum_rule_log_probability:
				result.increment_unary_log_count(p, c, lc)
		for (p, w), lc in self.lexical_log_counts.items():
			if lc - self.parent_log_counts[p] >= minimum_rule_log_probability:
				result.increment_lexical_log_count(p, w, lc)
		return result

	def to_grammar(self, minimum_rule_log_probability=-math.inf, packing_function_class=SimplePackingFunction):
		"""
		M-step: relative frequency estimate of every rule given its parent,
		after pruning rules below the minimum log probability.
		"""
		counts = self.pruned(minimum_rule_log_probability)
		totals = counts.parent_log_counts
		binary = {k: lc - totals[k[0]] for k, lc in counts.binary_log_counts.items()}
		unary = {k: lc - totals[k[0]] for k, lc in counts.unary_log_counts.items()}
		lexical = {k: lc - totals[k[0]] for k, lc in counts.lexical_log_counts.items()}
		return Grammar(self.vocabulary, self.lexicon, binary, unary, lexical, packing_function_class)

	def log_split_fraction(self):
		"""
		Log relative count of each split within its sibling pair (2i-1, 2i).
		E.g. if NP_0 was counted 12 times and NP_1 4 times, the entries are
		log(0.75) and log(0.25). Symbols outside a pair get 0, pairs with no
		counts log(1/2) each.
		"""
		v = self.vocabulary
		fractions = np.zeros(len(v))
		for first in range(1, len(v) - 1, 2):
			second = first + 1
			if v.first_split_indices[first] != v.first_split_indices[second]:
				continue
			count0 = self.parent_log_counts.get(first, -math.inf)
			count1 = self.parent_log_counts.get(second, -math.inf)
			total = log_sum(count0, count1)
			if total == -math.inf:
				fractions[first] = fractions[second] = LOG_ONE_HALF
			else:
				fractions[first] = count0 - total
				fractions[second] = count1 - total
		return fractions

	def merge_to_base(self):
		"""
		Sum the counts of all splits of each base symbol into a count grammar
		over the base vocabulary.
		"""
		base = self.vocabulary.base_indices
		result = FractionalCountGrammar(self.vocabulary.base_vocabulary, self.lexicon)
		for (p, l, r), lc in self.binary_log_counts.items():
			result.increment_binary_log_count(base[p], base[l], base[r], lc)
		for (p, c), lc in self.unary_log_counts.items():
			result.increment_unary_log_count(base[p], base[c], lc)
		for (p, w), lc in self.lexical_log_counts.items():
			result.increment_lexical_log_count(base[p], w, lc)
		return result

	def binary_rule_count(self):
		return len(self.binary_log_counts)

	def unary_rule_count(self):
		return len(self.unary_log_counts)

	def lexical_rule_count(self):
		return len(self.lexical_log_counts)

	def total_rule_count(self):
		return self.binary_rule_count() + self.unary_rule_count() + self.lexical_rule_count()

	def __str__(self):
		v = self.vocabulary
		lines = []
		for (p, l, r), lc in sorted(self.binary_log_counts.items()):
			lines.append(f"{v.symbol(p)} -> {v.symbol(l)} {v.symbol(r)} {math.exp(lc):.4f}")
		for (p, c), lc in sorted(self.unary_log_counts.items()):
			lines.append(f"{v.symbol(p)} -> {v.symbol(c)} {math.exp(lc):.4f}")
		for (p, w), lc in sorted(self.lexical_log_counts.items()):
			lines.append(f"{v.symbol(p)} -> {self.lexicon.symbol(w)} {math.exp(lc):.4f}")
		return "\n".join(lines)
