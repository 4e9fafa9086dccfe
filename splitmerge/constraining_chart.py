#constraining_chart.py
#
# A chart populated once from a single known tree (a gold tree or a best
# parse). Each open cell holds one entry per level of its unary chain; the
# constrained parser may only use splits of these symbols, with the binary
# midpoints fixed.

import math

import numpy as np

from chart import ChartCore
from grammar import SimplePackingFunction
from utility import (GrammarMismatchException, ParseFailureException, count_leaves,
	is_preterminal, max_unary_chain_height, unary_chain_height)


class ConstrainingChart:
	"""
	Chart built from a binarized tree and the grammar whose symbols label it.

	Besides the entries, it records per cell the unary chain length and
	midpoint, and for every non-root cell the index of its parent and sibling
	cells. open_cells lists the populated spans, shortest first and left to
	right within a span length.

	Raises:
		GrammarMismatchException: if the tree contains a nonterminal, terminal
		or child pair that the grammar cannot represent.
	"""

	def __init__(self, tree, grammar):
		self.vocabulary = grammar.vocabulary
		self.lexicon = grammar.lexicon
		self.packing_function = grammar.packing_function
		self.core = ChartCore(count_leaves(tree), max_unary_chain_height(tree) + 1, 1)
		self._init_links()
		self.tokens = []
		self._add_node(tree, 0, grammar)
		self._find_open_cells()

	def _init_links(self):
		## Parent and sibling cell indices, indexed by child cell index.
		self.parent_cell_indices = np.full(self.core.cells, -1, dtype=np.int32)
		self.sibling_cell_indices = np.full(self.core.cells, -1, dtype=np.int32)

	def _find_open_cells(self):
		core = self.core
		self.open_cells = []
		for span in range(1, core.size + 1):
			for start in range(core.size - span + 1):
				if core.unary_chain_lengths[core.cell_index(start, start + span)] > 0:
					self.open_cells.append((start, start + span))

	def _nonterminal(self, label, start, end):
		index = self.vocabulary.get(label)
		if index is None:
			raise GrammarMismatchException(f"Unknown nonterminal {label} at span ({start},{end})")
		return index

	def _add_node(self, node, start, grammar):
		core = self.core
		pf = self.packing_function
		label = node[0]
		end = start + count_leaves(node)
		parent = self._nonterminal(label, start, end)
		cell = core.cell_index(start, end)
		height = unary_chain_height(node)
		if core.unary_chain_lengths[cell] == 0:
			core.unary_chain_lengths[cell] = height + 1
		# Unary parents sit above their children, the bottom entry last.
		offset = core.entry_offset(cell, core.unary_chain_length(cell) - height - 1)
		core.nonterminal_indices[offset] = parent
		core.inside_probabilities[offset] = 0.0

		children = node[1:]
		if is_preterminal(node):
			word = self.lexicon.get(children[0])
			if word is None:
				raise GrammarMismatchException(f"Unknown terminal {children[0]} at span ({start},{end})")
			if grammar.lexical_log_probability(parent, word) == -math.inf:
				raise GrammarMismatchException(f"No rule {label} -> {children[0]} at span ({start},{end})")
			core.midpoints[cell] = end
			core.packed_children[offset] = pf.pack_lexical(word)
			self.tokens.append(word)
		elif len(children) == 1:
			child = self._nonterminal(children[0][0], start, end)
			if grammar.unary_log_probability(parent, child) == -math.inf:
				raise GrammarMismatchException(f"No rule {label} -> {children[0][0]} at span ({start},{end})")
			core.packed_children[offset] = pf.pack_unary(child)
			self._add_node(children[0], start, grammar)
		elif len(children) == 2:
			left, right = children
			midpoint = start + count_leaves(left)
			left_symbol = self._nonterminal(left[0], start, midpoint)
			right_symbol = self._nonterminal(right[0], midpoint, end)
			key = pf.pack(left_symbol, right_symbol)
			if key == pf.INVALID_KEY:
				raise GrammarMismatchException(
					f"No binary rule with children {left[0]} {right[0]} at span ({start},{end})")
			if grammar.binary_log_probability(parent, left_symbol, right_symbol) == -math.inf:
				raise GrammarMismatchException(
					f"No rule {label} -> {left[0]} {right[0]} at span ({start},{end})")
			core.packed_children[offset] = key
			core.midpoints[cell] = midpoint

			left_cell = core.cell_index(start, midpoint)
			right_cell = core.cell_index(midpoint, end)
			self.parent_cell_indices[left_cell] = cell
			self.sibling_cell_indices[left_cell] = right_cell
			self.parent_cell_indices[right_cell] = cell
			self.sibling_cell_indices[right_cell] = left_cell

			self._add_node(left, start, grammar)
			self._add_node(right, midpoint, grammar)
		else:
			raise GrammarMismatchException(
				f"Node {label} at span ({start},{end}) has {len(children)} children; binarize the tree first")

	@classmethod
	def from_constrained_chart(cls, constrained_chart, viterbi=False, to_base=True):
		"""
		Build a constraining chart from a populated ConstrainedChart.

		By default each level of each cell takes the entry with the highest
		posterior probability (inside + outside). With viterbi=True the chart
		is instead populated with the 1-best tree recorded by a Viterbi parse.
		With to_base=True split symbols are mapped to their base symbols;
		otherwise the chart keeps the split symbols.

		Raises:
			ParseFailureException: if the chart assigns the sentence zero probability.
			ValueError: if viterbi is requested of a chart not parsed with Viterbi.
		"""
		if constrained_chart.sentence_log_probability() == -math.inf:
			raise ParseFailureException("Cannot derive a constraining chart from a zero-probability parse")
		if viterbi and not constrained_chart.viterbi:
			raise ValueError("Chart was not populated by a Viterbi parse")

		split_vocabulary = constrained_chart.vocabulary
		chart = cls.__new__(cls)
		if to_base:
			chart.vocabulary = split_vocabulary.base_vocabulary
			symbol_map = split_vocabulary.base_indices
		else:
			chart.vocabulary = split_vocabulary
			symbol_map = range(len(split_vocabulary))
		chart.lexicon = constrained_chart.grammar.lexicon
		chart.packing_function = SimplePackingFunction(len(chart.vocabulary))

		source = constrained_chart.core
		chart.core = ChartCore(source.size, source.max_unary_chain_length, 1)
		chart.core.unary_chain_lengths[:source.cells] = source.unary_chain_lengths[:source.cells]
		chart.core.midpoints[:source.cells] = source.midpoints[:source.cells]
		chart.parent_cell_indices = constrained_chart.parent_cell_indices
		chart.sibling_cell_indices = constrained_chart.sibling_cell_indices
		chart.open_cells = constrained_chart.open_cells
		chart.tokens = constrained_chart.tokens

		if viterbi:
			chart._populate_viterbi(constrained_chart, symbol_map, 0, source.size, None)
		else:
			chart._populate_max_posterior(constrained_chart, symbol_map)
		return chart

	def _populate_max_posterior(self, constrained_chart, symbol_map):
		core = self.core
		source = constrained_chart.core
		pf = self.packing_function
		for start, end in self.open_cells:
			cell = core.cell_index(start, end)
			bottom = core.bottom_depth(cell)
			for depth in range(bottom, -1, -1):
				offset, first, count = constrained_chart.split_slots(cell, depth)
				posteriors = (source.inside_probabilities[offset:offset + count]
					+ constrained_chart.outside_probabilities[offset:offset + count])
				best = int(np.argmax(posteriors))
				if posteriors[best] == -math.inf:
					continue
				entry = core.entry_offset(cell, depth)
				core.nonterminal_indices[entry] = symbol_map[first + best]
				core.inside_probabilities[entry] = 0.0
				if depth < bottom:
					core.packed_children[entry] = pf.pack_unary(int(core.nonterminal_indices[entry + 1]))
				elif end - start == 1:
					core.packed_children[entry] = pf.pack_lexical(self.tokens[start])
				else:
					midpoint = core.midpoint(cell)
					left = core.nonterminal_indices[core.entry_offset(core.cell_index(start, midpoint), 0)]
					right = core.nonterminal_indices[core.entry_offset(core.cell_index(midpoint, end), 0)]
					core.packed_children[entry] = pf.pack(int(left), int(right))

	def _populate_viterbi(self, constrained_chart, symbol_map, start, end, parent):
		core = self.core
		source = constrained_chart.core
		pf = self.packing_function
		source_pf = constrained_chart.grammar.packing_function
		cell = core.cell_index(start, end)
		bottom = core.bottom_depth(cell)

		for depth in range(bottom + 1):
			offset, first, count = constrained_chart.split_slots(cell, depth)
			if parent is None:
				# Root: the best of the top level
				parent = first + int(np.argmax(source.inside_probabilities[offset:offset + count]))
			packed = int(source.packed_children[offset + parent - first])
			entry = core.entry_offset(cell, depth)
			core.nonterminal_indices[entry] = symbol_map[parent]
			core.inside_probabilities[entry] = 0.0
			if depth < bottom:
				parent = source_pf.unpack_left(packed)
				core.packed_children[entry] = pf.pack_unary(symbol_map[parent])

		if end - start == 1:
			core.packed_children[entry] = pf.pack_lexical(self.tokens[start])
			return
		left = source_pf.unpack_left(packed)
		right = source_pf.unpack_right(packed)
		core.packed_children[entry] = pf.pack(symbol_map[left], symbol_map[right])
		midpoint = core.midpoint(cell)
		self._populate_viterbi(constrained_chart, symbol_map, start, midpoint, left)
		self._populate_viterbi(constrained_chart, symbol_map, midpoint, end, right)

	@property
	def size(self):
		return self.core.size

	@property
	def max_unary_chain_length(self):
		return self.core.max_unary_chain_length

	def unary_chain_length(self, start, end):
		return self.core.unary_chain_length(self.core.cell_index(start, end))

	def midpoint(self, start, end):
		return self.core.midpoint(self.core.cell_index(start, end))

	def nonterminal(self, start, end, depth=0):
		"""Symbol at the given unary depth of a cell, or -1 if none."""
		core = self.core
		cell = core.cell_index(start, end)
		if depth >= core.unary_chain_length(cell):
			return -1
		return int(core.nonterminal_indices[core.entry_offset(cell, depth)])

	def get_inside(self, start, end, nonterminal):
		"""0 if the symbol occupies the cell at any depth, otherwise -inf."""
		core = self.core
		offset = core.cell_offset(start, end)
		if nonterminal in core.nonterminal_indices[offset:offset + core.cell_stride]:
			return 0.0
		return -math.inf

	def parent_cell(self, start, end):
		return int(self.parent_cell_indices[self.core.cell_index(start, end)])

	def sibling_cell(self, start, end):
		return int(self.sibling_cell_indices[self.core.cell_index(start, end)])

	def clear(self, *args):
		raise NotImplementedError("A ConstrainingChart cannot be modified once populated")

	def extract_best_parse(self):
		"""The tree the chart encodes, as nested tuples."""
		return self._extract(0, self.core.size)

	def _extract(self, start, end):
		core = self.core
		cell = core.cell_index(start, end)
		bottom = core.bottom_depth(cell)
		labels = [self.vocabulary.symbol(int(core.nonterminal_indices[core.entry_offset(cell, d)]))
			for d in range(bottom + 1)]
		packed = int(core.packed_children[core.entry_offset(cell, bottom)])
		if self.packing_function.is_lexical(packed):
			word = self.lexicon.symbol(self.packing_function.unpack_lexical(packed))
			subtree = (labels[-1], word)
		else:
			midpoint = core.midpoint(cell)
			subtree = (labels[-1], self._extract(start, midpoint), self._extract(midpoint, end))
		for label in reversed(labels[:-1]):
			subtree = (label, subtree)
		return subtree

	def log_probability(self, grammar):
		"""
		Log probability of the encoded tree under a grammar over the same
		vocabulary: the sum of the log probabilities of its rules.
		"""
		core = self.core
		pf = self.packing_function
		total = []
		for start, end in self.open_cells:
			cell = core.cell_index(start, end)
			for depth in range(core.unary_chain_length(cell)):
				entry = core.entry_offset(cell, depth)
				parent = int(core.nonterminal_indices[entry])
				packed = int(core.packed_children[entry])
				if pf.is_lexical(packed):
					total.append(grammar.lexical_log_probability(parent, pf.unpack_lexical(packed)))
				elif pf.is_unary(packed):
					total.append(grammar.unary_log_probability(parent, pf.unpack_left(packed)))
				else:
					total.append(grammar.binary_log_probability(parent, pf.unpack_left(packed), pf.unpack_right(packed)))
		return float(np.sum(total))
