#constrained_chart.py
#
# Chart for a parse constrained by a ConstrainingChart: the same cells and
# unary chains, but each level of a cell holds every split of the symbol the
# constraining chart licenses there, with inside and outside log
# probabilities in parallel arrays.
#
# One ConstrainedChart is meant to be reused as a buffer across sentences:
# clear() resets it for the next constraining chart.

import math

import numpy as np
from scipy.special import logsumexp

from chart import ChartCore
from constraining_chart import ConstrainingChart


class ConstrainedChart:

	def __init__(self, constraining_chart, grammar):
		self.grammar = grammar
		self.vocabulary = grammar.vocabulary
		self.core = None
		self.outside_probabilities = None
		self.viterbi = False
		self.clear(constraining_chart)

	def clear(self, constraining_chart):
		"""
		Reset every entry and copy the cell structure of a constraining chart.
		The arrays grow only when the new sentence needs more room.
		"""
		if constraining_chart.vocabulary.symbols != self.vocabulary.base_vocabulary.symbols:
			raise ValueError("Constraining chart must be labelled with the base symbols of the grammar")
		source = constraining_chart.core
		width = self.vocabulary.max_splits
		if self.core is None:
			self.core = ChartCore(source.size, source.max_unary_chain_length, width)
		else:
			self.core.reset(source.size, source.max_unary_chain_length, width)
		core = self.core
		if self.outside_probabilities is None or len(self.outside_probabilities) < core.capacity:
			self.outside_probabilities = np.empty(core.capacity, dtype=np.float64)
		self.outside_probabilities[:core.array_size] = -np.inf

		core.unary_chain_lengths[:core.cells] = source.unary_chain_lengths[:source.cells]
		core.midpoints[:core.cells] = source.midpoints[:source.cells]
		self.constraining_chart = constraining_chart
		self.open_cells = constraining_chart.open_cells
		self.parent_cell_indices = constraining_chart.parent_cell_indices
		self.sibling_cell_indices = constraining_chart.sibling_cell_indices
		self.tokens = constraining_chart.tokens
		self.viterbi = False

	def reset(self, *args):
		raise NotImplementedError("Use clear(constraining_chart) to reuse a ConstrainedChart")

	@property
	def size(self):
		return self.core.size

	def split_slots(self, cell, depth):
		"""
		Return (offset, first split, split count) for one level of a cell: the
		entries of the level start at offset and hold the splits first ..
		first + count - 1 of the constraining symbol, in order.
		"""
		core = self.constraining_chart.core
		base = int(core.nonterminal_indices[core.entry_offset(cell, depth)])
		first, count = self.vocabulary.split_range(base)
		return self.core.entry_offset(cell, depth), first, count

	def populate_slots(self, cell, depth):
		"""As split_slots, also labelling the level's entries with their split symbols."""
		offset, first, count = self.split_slots(cell, depth)
		self.core.nonterminal_indices[offset:offset + count] = np.arange(first, first + count)
		return offset, first, count

	def _find(self, start, end, nonterminal, depth):
		core = self.core
		cell = core.cell_index(start, end)
		length = core.unary_chain_length(cell)
		if depth is None:
			depths = range(length)
		elif depth < length:
			depths = [depth]
		else:
			return None
		for d in depths:
			offset, first, count = self.split_slots(cell, d)
			if first <= nonterminal < first + count:
				return offset + nonterminal - first
		return None

	def get_inside(self, start, end, nonterminal, depth=None):
		"""
		Inside log probability of a split symbol in a cell, searching every
		unary depth unless one is given; -inf if the symbol is not there.
		"""
		entry = self._find(start, end, nonterminal, depth)
		if entry is None:
			return -math.inf
		return float(self.core.inside_probabilities[entry])

	def get_outside(self, start, end, nonterminal, depth=None):
		entry = self._find(start, end, nonterminal, depth)
		if entry is None:
			return -math.inf
		return float(self.outside_probabilities[entry])

	def sentence_log_probability(self):
		"""Total inside log probability of the top level of the root cell."""
		core = self.core
		offset, first, count = self.split_slots(core.cell_index(0, core.size), 0)
		return float(logsumexp(core.inside_probabilities[offset:offset + count]))

	def extract_best_parse(self):
		"""
		Tree over split symbols: the 1-best tree after a Viterbi parse,
		otherwise the highest posterior symbol at every level.
		"""
		chart = ConstrainingChart.from_constrained_chart(self, viterbi=self.viterbi, to_base=False)
		return chart.extract_best_parse()
