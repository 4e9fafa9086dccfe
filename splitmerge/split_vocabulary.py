#split_vocabulary.py
#
# Symbol tables for grammar nonterminals that are repeatedly split into
# subcategories and merged back together.
#
# Index 0 is always the start symbol, which is never split. All subcategories
# of a base symbol occupy a contiguous block of indices (a split group), so a
# split symbol's first sibling index and split count identify its whole group.

from utility import split_symbol_name


class SymbolSet:
	"""
	Ordered mapping between symbols and integer indices. Never modified after
	construction.
	"""

	def __init__(self, symbols):
		self.symbols = list(symbols)
		self.indices = {s: i for i, s in enumerate(self.symbols)}
		if len(self.indices) != len(self.symbols):
			raise ValueError("Duplicate symbols in symbol set")

	def __len__(self):
		return len(self.symbols)

	def __contains__(self, symbol):
		return symbol in self.indices

	def __iter__(self):
		return iter(self.symbols)

	def __repr__(self):
		return f"{type(self).__name__}({self.symbols!r})"

	def index(self, symbol):
		return self.indices[symbol]

	def get(self, symbol, default=None):
		return self.indices.get(symbol, default)

	def symbol(self, index):
		return self.symbols[index]


class SplitVocabulary(SymbolSet):
	"""
	Nonterminal vocabulary with split-group bookkeeping.

	A vocabulary with no parent is a base (unsplit) vocabulary: every symbol is
	its own base symbol. Otherwise every symbol except the start symbol is named
	root_k, where root is a symbol of the base vocabulary and k its subcategory.

	Args:
		symbols: symbol names, start symbol first.
		parent_vocabulary: the vocabulary this one was split or merged from.
		merged_indices: for a merged vocabulary, map from parent indices to
			indices in this vocabulary.
		merged_parents: indices of this vocabulary that absorbed a merged sibling.
	"""

	def __init__(self, symbols, parent_vocabulary=None, merged_indices=None, merged_parents=None):
		super().__init__(symbols)
		if not self.symbols:
			raise ValueError("A vocabulary needs at least a start symbol")
		self.start_symbol = self.symbols[0]
		self.parent_vocabulary = parent_vocabulary
		if parent_vocabulary is None:
			self.base_vocabulary = self
		else:
			self.base_vocabulary = parent_vocabulary.base_vocabulary
		self.merged_indices = dict(merged_indices) if merged_indices else {}
		self.merged_parents = frozenset(merged_parents or ())

		## Per symbol: index of the base symbol and subcategory index.
		self.base_indices = []
		self.subcategory_indices = []
		for symbol in self.symbols:
			if self.base_vocabulary is self:
				root, subcategory = symbol, 0
			else:
				root, subcategory = split_symbol_name(symbol)
				if subcategory is None:
					subcategory = 0
			if root not in self.base_vocabulary:
				raise ValueError(f"Symbol {symbol} has no base symbol in the base vocabulary")
			self.base_indices.append(self.base_vocabulary.index(root))
			self.subcategory_indices.append(subcategory)

		## Per symbol: first index of its split group and the size of the group.
		self.first_split_indices = [0] * len(self)
		self.split_counts = [0] * len(self)
		## Per base symbol: first index and size of its split group.
		self.base_first_split_indices = [-1] * len(self.base_vocabulary)
		self.base_split_counts = [0] * len(self.base_vocabulary)

		i = 0
		while i < len(self):
			base = self.base_indices[i]
			j = i
			while j < len(self) and self.base_indices[j] == base:
				j += 1
			if self.base_split_counts[base] > 0:
				raise ValueError(f"Split symbols of {self.base_vocabulary.symbol(base)} are not contiguous")
			for k in range(i, j):
				self.first_split_indices[k] = i
				self.split_counts[k] = j - i
			self.base_first_split_indices[base] = i
			self.base_split_counts[base] = j - i
			i = j

		if self.split_counts[0] != 1:
			raise ValueError("The start symbol cannot be split")
		self.max_splits = max(self.split_counts)

	def base_symbol(self, index):
		return self.base_vocabulary.symbol(self.base_indices[index])

	def split_range(self, base_index):
		"""
		Return (first index, split count) of the split group of a base symbol.
		"""
		return self.base_first_split_indices[base_index], self.base_split_counts[base_index]

	def is_second_sibling(self, index):
		return self.first_split_indices[index] < index

	def split(self):
		"""
		Return a new vocabulary with every non-start symbol split in two.

		Symbol i > 0 becomes symbols 2i-1 and 2i; X becomes X_0, X_1 and X_k
		becomes X_2k, X_2k+1. The result has 2n-1 symbols.
		"""
		symbols = [self.start_symbol]
		for i in range(1, len(self)):
			root = self.base_symbol(i)
			subcategory = self.subcategory_indices[i]
			symbols.append(f"{root}_{2 * subcategory}")
			symbols.append(f"{root}_{2 * subcategory + 1}")
		return SplitVocabulary(symbols, parent_vocabulary=self)

	def merge(self, indices):
		"""
		Return a new vocabulary in which each of the given symbols is folded
		into the sibling preceding it.

		Surviving members of each group are renumbered root_0, root_1, ... in
		order. The result records the old-to-new index map and the set of new
		indices that absorbed a merged sibling.

		Raises:
			ValueError: if an index is not a second (or later) member of a split group.
		"""
		indices = sorted(set(indices))
		for index in indices:
			if not 0 < index < len(self) or not self.is_second_sibling(index):
				raise ValueError(f"Cannot merge symbol {index}: not a second sibling")
		to_merge = set(indices)

		merged_indices = {0: 0}
		merged_parents = set()
		symbols = [self.start_symbol]
		previous_base = None
		next_subcategory = 0
		for i in range(1, len(self)):
			if i in to_merge:
				merged_parents.add(len(symbols) - 1)
			else:
				base = self.base_indices[i]
				root = self.base_symbol(i)
				if base == previous_base:
					symbols.append(f"{root}_{next_subcategory}")
					next_subcategory += 1
				else:
					symbols.append(f"{root}_0")
					next_subcategory = 1
				previous_base = base
			merged_indices[i] = len(symbols) - 1

		return SplitVocabulary(symbols, parent_vocabulary=self,
			merged_indices=merged_indices, merged_parents=merged_parents)
