#chart.py
#
# Flat parallel arrays shared by the constraining and constrained charts.
#
# Cells of the triangular chart are numbered by cell_index(start, end). Each
# cell holds max_unary_chain_length depth levels of `width` entries. Depth 0 is
# the top of the cell's unary chain and depth unary_chain_length - 1 its
# lexical or binary bottom. All offset arithmetic lives in this class.

import numpy as np

from grammar import PackingFunction


class ChartCore:

	def __init__(self, size, max_unary_chain_length, width):
		self.capacity = 0
		self.cell_capacity = 0
		self.reset(size, max_unary_chain_length, width)

	def reset(self, size, max_unary_chain_length, width):
		"""
		Resize for a new sentence and fill every entry with sentinels. The
		arrays are reallocated only when they are too small.
		"""
		self.size = size
		self.max_unary_chain_length = max_unary_chain_length
		self.width = width
		self.cell_stride = max_unary_chain_length * width
		self.cells = size * (size + 1) // 2
		self.array_size = self.cells * self.cell_stride

		if self.array_size > self.capacity:
			self.capacity = self.array_size
			self.nonterminal_indices = np.empty(self.capacity, dtype=np.int32)
			self.inside_probabilities = np.empty(self.capacity, dtype=np.float64)
			self.packed_children = np.empty(self.capacity, dtype=np.int64)
		if self.cells > self.cell_capacity:
			self.cell_capacity = self.cells
			self.unary_chain_lengths = np.empty(self.cell_capacity, dtype=np.int32)
			self.midpoints = np.empty(self.cell_capacity, dtype=np.int32)

		n = self.array_size
		self.nonterminal_indices[:n] = -1
		self.inside_probabilities[:n] = -np.inf
		self.packed_children[:n] = PackingFunction.INVALID_KEY
		self.unary_chain_lengths[:self.cells] = 0
		self.midpoints[:self.cells] = 0

	def cell_index(self, start, end):
		if not 0 <= start < end <= self.size:
			raise ValueError(f"Illegal span ({start},{end}) in chart of size {self.size}")
		return start * self.size - start * (start - 1) // 2 + end - start - 1

	def cell_offset(self, start, end):
		return self.cell_index(start, end) * self.cell_stride

	def entry_offset(self, cell, depth):
		return cell * self.cell_stride + depth * self.width

	def bottom_depth(self, cell):
		return int(self.unary_chain_lengths[cell]) - 1

	def unary_chain_length(self, cell):
		return int(self.unary_chain_lengths[cell])

	def midpoint(self, cell):
		return int(self.midpoints[cell])
