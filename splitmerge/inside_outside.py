#inside_outside.py
#
# Inside-outside estimation constrained by a ConstrainingChart.
#
# Every level of every open cell may only hold splits of the symbol the
# constraining chart has there, and binary cells use the constraining chart's
# midpoint, so a sentence is parsed in time proportional to
# length * splits^2 rather than length^3 * symbols^3.
#
# A parse goes through the states EMPTY -> INSIDE -> OUTSIDE; rule counts and
# merge costs need the OUTSIDE state.

import math

import numpy as np
from scipy.special import logsumexp

from constrained_chart import ConstrainedChart
from utility import ParseFailureException

EMPTY = 'empty'
INSIDE = 'inside'
OUTSIDE = 'outside'


def _in_range(parents, first, count):
	return (parents >= first) & (parents < first + count)


class ConstrainedInsideOutsideParser:
	"""
	Parses constraining charts with a split grammar.

	The parser owns a single ConstrainedChart that is cleared and refilled
	for every sentence, so one parser must not be shared between concurrent
	workers.

	With viterbi=True the inside pass keeps the best derivation of each entry
	instead of the sum, records its children and skips the outside pass.
	"""

	def __init__(self, grammar, viterbi=False):
		self.grammar = grammar
		self.viterbi = viterbi
		self.chart = None
		self.state = EMPTY

	def parse(self, constraining_chart):
		"""
		Populate the chart for a sentence: inside probabilities, then outside
		probabilities unless this is a Viterbi parser. Returns the chart.

		Raises:
			ParseFailureException: if the sentence has zero probability.
		"""
		if self.chart is None:
			self.chart = ConstrainedChart(constraining_chart, self.grammar)
		else:
			self.chart.clear(constraining_chart)
		self.state = EMPTY
		self.chart.viterbi = self.viterbi
		self.inside()
		if self.chart.sentence_log_probability() == -math.inf:
			raise ParseFailureException(
				f"Zero probability for sentence of length {constraining_chart.size}")
		if not self.viterbi:
			self.outside()
		return self.chart

	def find_best_parse(self, constraining_chart):
		"""Parse a sentence and return (best tree over split symbols, chart)."""
		chart = self.parse(constraining_chart)
		return chart.extract_best_parse(), chart

	def inside(self):
		chart = self.chart
		core = chart.core
		for start, end in chart.open_cells:
			cell = core.cell_index(start, end)
			bottom = core.bottom_depth(cell)
			if end - start == 1:
				self._inside_lexical(cell, bottom, start)
			else:
				self._inside_binary(cell, bottom, start, end)
			for depth in range(bottom - 1, -1, -1):
				self._inside_unary(cell, depth)
		self.state = INSIDE

	def _inside_lexical(self, cell, bottom, position):
		chart = self.chart
		core = chart.core
		offset, first, count = chart.populate_slots(cell, bottom)
		word = chart.tokens[position]
		rules = self.grammar.lexical_rules_for_word(word)
		if rules is None:
			return
		parents, probabilities = rules
		mask = _in_range(parents, first, count)
		slots = offset + parents[mask] - first
		core.inside_probabilities[slots] = probabilities[mask]
		core.packed_children[slots] = self.grammar.packing_function.pack_lexical(word)

	def _inside_binary(self, cell, bottom, start, end):
		chart = self.chart
		core = chart.core
		pf = self.grammar.packing_function
		inside = core.inside_probabilities
		midpoint = core.midpoint(cell)
		left_offset, left_first, left_count = chart.split_slots(core.cell_index(start, midpoint), 0)
		right_offset, right_first, right_count = chart.split_slots(core.cell_index(midpoint, end), 0)
		offset, first, count = chart.populate_slots(cell, bottom)

		for i in range(left_count):
			left_inside = inside[left_offset + i]
			if left_inside == -math.inf:
				continue
			for j in range(right_count):
				right_inside = inside[right_offset + j]
				if right_inside == -math.inf:
					continue
				key = pf.pack(left_first + i, right_first + j)
				rules = self.grammar.binary_rules_for_key(key)
				if rules is None:
					continue
				parents, probabilities = rules
				mask = _in_range(parents, first, count)
				if not mask.any():
					continue
				slots = offset + parents[mask] - first
				scores = probabilities[mask] + (left_inside + right_inside)
				self._accumulate_inside(slots, scores, key)

	def _inside_unary(self, cell, depth):
		chart = self.chart
		core = chart.core
		pf = self.grammar.packing_function
		inside = core.inside_probabilities
		child_offset, child_first, child_count = chart.split_slots(cell, depth + 1)
		offset, first, count = chart.populate_slots(cell, depth)

		for k in range(child_count):
			child_inside = inside[child_offset + k]
			if child_inside == -math.inf:
				continue
			child = child_first + k
			rules = self.grammar.unary_rules_for_child(child)
			if rules is None:
				continue
			parents, probabilities = rules
			mask = _in_range(parents, first, count)
			if not mask.any():
				continue
			slots = offset + parents[mask] - first
			self._accumulate_inside(slots, probabilities[mask] + child_inside, pf.pack_unary(child))

	def _accumulate_inside(self, slots, scores, key):
		core = self.chart.core
		if not self.viterbi:
			np.logaddexp.at(core.inside_probabilities, slots, scores)
			return
		for slot, score in zip(slots, scores):
			if score > core.inside_probabilities[slot]:
				core.inside_probabilities[slot] = score
				core.packed_children[slot] = key

	def outside(self):
		if self.state != INSIDE:
			raise RuntimeError("The outside pass needs a completed inside pass")
		chart = self.chart
		core = chart.core
		offset, first, count = chart.split_slots(core.cell_index(0, core.size), 0)
		chart.outside_probabilities[offset:offset + count] = 0.0

		for start, end in reversed(chart.open_cells):
			cell = core.cell_index(start, end)
			bottom = core.bottom_depth(cell)
			for depth in range(bottom):
				self._outside_unary(cell, depth)
			if end - start > 1:
				self._outside_binary(cell, bottom, start, end)
		self.state = OUTSIDE

	def _outside_unary(self, cell, depth):
		chart = self.chart
		outside = chart.outside_probabilities
		offset, first, count = chart.split_slots(cell, depth)
		child_offset, child_first, child_count = chart.split_slots(cell, depth + 1)

		for k in range(child_count):
			rules = self.grammar.unary_rules_for_child(child_first + k)
			if rules is None:
				continue
			parents, probabilities = rules
			mask = _in_range(parents, first, count)
			if not mask.any():
				continue
			contributions = outside[offset + parents[mask] - first] + probabilities[mask]
			outside[child_offset + k] = np.logaddexp(outside[child_offset + k], logsumexp(contributions))

	def _outside_binary(self, cell, bottom, start, end):
		chart = self.chart
		core = chart.core
		pf = self.grammar.packing_function
		inside = core.inside_probabilities
		outside = chart.outside_probabilities
		midpoint = core.midpoint(cell)
		left_offset, left_first, left_count = chart.split_slots(core.cell_index(start, midpoint), 0)
		right_offset, right_first, right_count = chart.split_slots(core.cell_index(midpoint, end), 0)
		offset, first, count = chart.split_slots(cell, bottom)

		for i in range(left_count):
			left_inside = inside[left_offset + i]
			for j in range(right_count):
				right_inside = inside[right_offset + j]
				if left_inside == -math.inf and right_inside == -math.inf:
					continue
				rules = self.grammar.binary_rules_for_key(pf.pack(left_first + i, right_first + j))
				if rules is None:
					continue
				parents, probabilities = rules
				mask = _in_range(parents, first, count)
				if not mask.any():
					continue
				parent_scores = logsumexp(outside[offset + parents[mask] - first] + probabilities[mask])
				outside[left_offset + i] = np.logaddexp(outside[left_offset + i], parent_scores + right_inside)
				outside[right_offset + j] = np.logaddexp(outside[right_offset + j], parent_scores + left_inside)

	def count_rule_occurrences(self, count_grammar):
		"""
		Add the expected count of every rule used in the chart, given the
		sentence, to a FractionalCountGrammar keyed by split symbols.
		"""
		if self.state != OUTSIDE:
			raise RuntimeError("Counting rule occurrences needs completed inside and outside passes")
		chart = self.chart
		core = chart.core
		inside = core.inside_probabilities
		outside = chart.outside_probabilities
		pf = self.grammar.packing_function
		sentence_log_probability = chart.sentence_log_probability()

		for start, end in chart.open_cells:
			cell = core.cell_index(start, end)
			bottom = core.bottom_depth(cell)

			for depth in range(bottom):
				offset, first, count = chart.split_slots(cell, depth)
				child_offset, child_first, child_count = chart.split_slots(cell, depth + 1)
				for k in range(child_count):
					child_inside = inside[child_offset + k]
					if child_inside == -math.inf:
						continue
					child = child_first + k
					rules = self.grammar.unary_rules_for_child(child)
					if rules is None:
						continue
					parents, probabilities = rules
					mask = _in_range(parents, first, count)
					scores = (outside[offset + parents[mask] - first] + probabilities[mask]
						+ (child_inside - sentence_log_probability))
					for parent, score in zip(parents[mask], scores):
						if score > -math.inf:
							count_grammar.increment_unary_log_count(int(parent), child, float(score))

			offset, first, count = chart.split_slots(cell, bottom)
			if end - start == 1:
				word = chart.tokens[start]
				rules = self.grammar.lexical_rules_for_word(word)
				if rules is None:
					continue
				parents, probabilities = rules
				mask = _in_range(parents, first, count)
				scores = outside[offset + parents[mask] - first] + probabilities[mask] - sentence_log_probability
				for parent, score in zip(parents[mask], scores):
					if score > -math.inf:
						count_grammar.increment_lexical_log_count(int(parent), word, float(score))
				continue

			midpoint = core.midpoint(cell)
			left_offset, left_first, left_count = chart.split_slots(core.cell_index(start, midpoint), 0)
			right_offset, right_first, right_count = chart.split_slots(core.cell_index(midpoint, end), 0)
			for i in range(left_count):
				left_inside = inside[left_offset + i]
				if left_inside == -math.inf:
					continue
				for j in range(right_count):
					right_inside = inside[right_offset + j]
					if right_inside == -math.inf:
						continue
					left, right = left_first + i, right_first + j
					rules = self.grammar.binary_rules_for_key(pf.pack(left, right))
					if rules is None:
						continue
					parents, probabilities = rules
					mask = _in_range(parents, first, count)
					scores = (outside[offset + parents[mask] - first] + probabilities[mask]
						+ (left_inside + right_inside - sentence_log_probability))
					for parent, score in zip(parents[mask], scores):
						if score > -math.inf:
							count_grammar.increment_binary_log_count(int(parent), left, right, float(score))

	def count_merge_cost(self, merge_cost, log_split_fraction):
		"""
		Add to merge_cost the estimated log likelihood lost by merging each
		pair of sibling splits (Petrov et al. 2006, eq. 2).

		At every level where both siblings of a pair have nonzero inside and
		outside probability, the sentence likelihood computed from that level
		is compared with the likelihood after replacing the pair by a single
		symbol whose inside probability is the split-fraction weighted sum and
		whose outside probability is the sum of the pair's. The pair
		(2i-1, 2i) accumulates into merge_cost[i-1].

		Args:
			merge_cost: numpy array of length (vocabulary size - 1) / 2.
			log_split_fraction: numpy array of log relative frequencies of
				each split within its pair, indexed by split symbol.
		"""
		if self.state != OUTSIDE:
			raise RuntimeError("Merge costs need completed inside and outside passes")
		chart = self.chart
		core = chart.core
		inside = core.inside_probabilities
		outside = chart.outside_probabilities

		for start, end in chart.open_cells:
			cell = core.cell_index(start, end)
			for depth in range(core.unary_chain_length(cell)):
				offset, first, count = chart.split_slots(cell, depth)
				if count < 2:
					continue
				level_inside = inside[offset:offset + count]
				level_outside = outside[offset:offset + count]
				posteriors = level_inside + level_outside
				split_likelihood = logsumexp(posteriors)
				if split_likelihood == -math.inf:
					continue

				for k in range(0, count - 1, 2):
					if (level_inside[k] == -math.inf or level_inside[k + 1] == -math.inf
							or level_outside[k] == -math.inf or level_outside[k + 1] == -math.inf):
						continue
					symbol = first + k
					merged_inside = np.logaddexp(log_split_fraction[symbol] + level_inside[k],
						log_split_fraction[symbol + 1] + level_inside[k + 1])
					merged_outside = np.logaddexp(level_outside[k], level_outside[k + 1])
					others = np.delete(posteriors, [k, k + 1])
					merged_likelihood = logsumexp(np.append(others, merged_inside + merged_outside))
					merge_cost[symbol >> 1] += split_likelihood - merged_likelihood
