#grammar.py
#
# A PCFG over a split vocabulary, with log probabilities on binary, unary and
# lexical rules, and the split and merge transforms used in split-merge
# training.
#
# Rules live in flat dictionaries keyed by index tuples:
#	binary_rules[(parent, left, right)]
#	unary_rules[(parent, child)]
#	lexical_rules[(parent, terminal)]
# The probabilities of all the rules of a parent, of every type, sum to one.

import math
from collections import defaultdict

import numpy as np
from scipy.special import logsumexp

from utility import LOG_ONE_HALF, log_sum


class PackingFunction:
	"""
	Encodes a (left child, right child) pair as a single integer key.

	Unary productions are packed with a reserved right child and lexical
	productions as negative keys. INVALID_KEY marks a pair that cannot occur.
	"""

	INVALID_KEY = -(1 << 62)

	def __init__(self, num_symbols, pairs=()):
		self.num_symbols = num_symbols
		# Right child recorded for unary productions.
		self.unary_marker = num_symbols

	def pack(self, left, right):
		raise NotImplementedError

	def unpack_left(self, key):
		raise NotImplementedError

	def unpack_right(self, key):
		raise NotImplementedError

	def pack_unary(self, child):
		return self.pack(child, self.unary_marker)

	def pack_lexical(self, terminal):
		return -terminal - 1

	def is_lexical(self, key):
		return self.INVALID_KEY < key < 0

	def is_unary(self, key):
		return key >= 0 and self.unpack_right(key) == self.unary_marker

	def unpack_lexical(self, key):
		return -key - 1


class SimplePackingFunction(PackingFunction):
	"""Shifts the left child above the bits of the right child."""

	def __init__(self, num_symbols, pairs=()):
		super().__init__(num_symbols)
		self.shift = num_symbols.bit_length()
		self.mask = (1 << self.shift) - 1

	def pack(self, left, right):
		return (left << self.shift) | right

	def unpack_left(self, key):
		if key < 0:
			return self.unpack_lexical(key)
		return key >> self.shift

	def unpack_right(self, key):
		return key & self.mask


class HashPackingFunction(PackingFunction):
	"""
	Dense keys for the child pairs that occur in binary rules. Any other pair
	packs to INVALID_KEY, so the parser skips it without a rule lookup.
	"""

	def __init__(self, num_symbols, pairs=()):
		super().__init__(num_symbols)
		self.pairs = sorted(set(pairs))
		self.keys = {pair: key for key, pair in enumerate(self.pairs)}
		self.unary_offset = len(self.pairs)

	def pack(self, left, right):
		if right == self.unary_marker:
			return self.unary_offset + left
		return self.keys.get((left, right), self.INVALID_KEY)

	def unpack_left(self, key):
		if key < 0:
			return self.unpack_lexical(key)
		if key >= self.unary_offset:
			return key - self.unary_offset
		return self.pairs[key][0]

	def unpack_right(self, key):
		if key >= self.unary_offset:
			return self.unary_marker
		return self.pairs[key][1]


def _rule_arrays(rules):
	rules = sorted(rules)
	parents = np.array([p for p, _ in rules], dtype=np.int32)
	probabilities = np.array([lp for _, lp in rules], dtype=np.float64)
	return parents, probabilities


def _accumulate(rules, key, log_probability):
	if key in rules:
		rules[key] = log_sum(rules[key], log_probability)
	else:
		rules[key] = log_probability


class Grammar:
	"""
	Probabilistic grammar over a SplitVocabulary and a terminal lexicon.

	The grammar is immutable once built; the child-indexed views used by the
	constrained parser are computed in the constructor.
	"""

	def __init__(self, vocabulary, lexicon, binary_rules=None, unary_rules=None, lexical_rules=None,
			packing_function_class=SimplePackingFunction):
		self.vocabulary = vocabulary
		self.lexicon = lexicon
		self.binary_rules = dict(binary_rules or {})
		self.unary_rules = dict(unary_rules or {})
		self.lexical_rules = dict(lexical_rules or {})
		self.packing_function_class = packing_function_class
		self.packing_function = packing_function_class(len(vocabulary),
			[(l, r) for (_, l, r) in self.binary_rules])
		self.start = 0

		pf = self.packing_function
		binary = defaultdict(list)
		for (p, l, r), lp in self.binary_rules.items():
			binary[pf.pack(l, r)].append((p, lp))
		unary = defaultdict(list)
		for (p, c), lp in self.unary_rules.items():
			unary[c].append((p, lp))
		lexical = defaultdict(list)
		for (p, w), lp in self.lexical_rules.items():
			lexical[w].append((p, lp))
		## packed child pair -> (parent array, log probability array)
		self.binary_rules_by_key = {k: _rule_arrays(v) for k, v in binary.items()}
		## child -> (parent array, log probability array)
		self.unary_rules_by_child = {k: _rule_arrays(v) for k, v in unary.items()}
		## terminal -> (parent array, log probability array)
		self.lexical_rules_by_word = {k: _rule_arrays(v) for k, v in lexical.items()}

	def binary_rules_for_key(self, key):
		return self.binary_rules_by_key.get(key)

	def unary_rules_for_child(self, child):
		return self.unary_rules_by_child.get(child)

	def lexical_rules_for_word(self, word):
		return self.lexical_rules_by_word.get(word)

	def binary_log_probability(self, parent, left, right):
		return self.binary_rules.get((parent, left, right), -math.inf)

	def unary_log_probability(self, parent, child):
		return self.unary_rules.get((parent, child), -math.inf)

	def lexical_log_probability(self, parent, word):
		return self.lexical_rules.get((parent, word), -math.inf)

	def binary_rule_count(self):
		return len(self.binary_rules)

	def unary_rule_count(self):
		return len(self.unary_rules)

	def lexical_rule_count(self):
		return len(self.lexical_rules)

	def summary(self):
		return "%4d nonterminals  %7d binary rules  %6d unary rules  %7d lexical rules" % (
			len(self.vocabulary), self.binary_rule_count(), self.unary_rule_count(), self.lexical_rule_count())

	def parent_log_totals(self):
		"""
		Return a dict mapping each parent to the log of the summed probability
		of all of its rules.
		"""
		by_parent = defaultdict(list)
		for (p, *_), lp in self._all_rules():
			by_parent[p].append(lp)
		return {p: logsumexp(lps) for p, lps in by_parent.items()}

	def verify_probability_distribution(self, tolerance=1e-6):
		"""
		Check that the rules of every parent sum to one.

		Raises:
			ValueError: naming the first parent whose rules do not.
		"""
		for parent, total in sorted(self.parent_log_totals().items()):
			if abs(math.exp(total) - 1.0) > tolerance:
				raise ValueError(
					f"Probability distribution of {self.vocabulary.symbol(parent)} sums to {math.exp(total)}")

	def _all_rules(self):
		yield from self.binary_rules.items()
		yield from self.unary_rules.items()
		yield from self.lexical_rules.items()

	def split(self, noise_generator=None):
		"""
		Return a grammar in which every nonterminal except the start symbol is
		split in two.

		A binary rule becomes 8 rules with probability P/4 each, a unary rule 4
		rules with P/2 (2 when the parent is the start symbol) and a lexical
		rule 2 rules with probability P. The noise generator perturbs each
		sibling pair of rules in opposite directions. Every parent is then
		renormalised.
		"""
		if noise_generator is None:
			noise_generator = ZERO_NOISE
		vocabulary = self.vocabulary.split()

		binary = {}
		for (p, l, r), lp in self.binary_rules.items():
			parents, lefts, rights = _split_indices(p), _split_indices(l), _split_indices(r)
			lp += math.log(1.0 / (len(lefts) * len(rights)))
			noise = noise_generator.noise(len(parents) * len(lefts) * len(rights))
			k = 0
			for sp in parents:
				for sl in lefts:
					for sr in rights:
						binary[(sp, sl, sr)] = lp + noise[k]
						k += 1

		unary = {}
		for (p, c), lp in self.unary_rules.items():
			parents, children = _split_indices(p), _split_indices(c)
			lp += math.log(1.0 / len(children))
			noise = noise_generator.noise(len(parents) * len(children))
			k = 0
			for sp in parents:
				for sc in children:
					unary[(sp, sc)] = lp + noise[k]
					k += 1

		lexical = {}
		for (p, w), lp in self.lexical_rules.items():
			parents = _split_indices(p)
			noise = noise_generator.noise(len(parents))
			for k, sp in enumerate(parents):
				lexical[(sp, w)] = lp + noise[k]

		split_grammar = Grammar(vocabulary, self.lexicon, binary, unary, lexical, self.packing_function_class)
		return split_grammar.normalized()

	def normalized(self):
		"""Return a copy with the rules of every parent rescaled to sum to one."""
		totals = self.parent_log_totals()
		binary = {k: lp - totals[k[0]] for k, lp in self.binary_rules.items()}
		unary = {k: lp - totals[k[0]] for k, lp in self.unary_rules.items()}
		lexical = {k: lp - totals[k[0]] for k, lp in self.lexical_rules.items()}
		return Grammar(self.vocabulary, self.lexicon, binary, unary, lexical, self.packing_function_class)

	def merge(self, indices):
		"""
		Return a grammar in which each of the given second-sibling symbols is
		merged into its preceding sibling.

		Rules that collide after remapping are summed; rules of a parent that
		absorbed a sibling are halved, averaging the two distributions. Every
		parent is then renormalised, so a sibling left without rules by pruning
		still gives a valid distribution.
		"""
		vocabulary = self.vocabulary.merge(indices)
		mapping = vocabulary.merged_indices
		merged_parents = vocabulary.merged_parents

		def adjustment(parent):
			return LOG_ONE_HALF if parent in merged_parents else 0.0

		binary = {}
		for (p, l, r), lp in self.binary_rules.items():
			parent = mapping[p]
			_accumulate(binary, (parent, mapping[l], mapping[r]), lp + adjustment(parent))
		unary = {}
		for (p, c), lp in self.unary_rules.items():
			parent = mapping[p]
			_accumulate(unary, (parent, mapping[c]), lp + adjustment(parent))
		lexical = {}
		for (p, w), lp in self.lexical_rules.items():
			parent = mapping[p]
			_accumulate(lexical, (parent, w), lp + adjustment(parent))

		merged = Grammar(vocabulary, self.lexicon, binary, unary, lexical, self.packing_function_class)
		return merged.normalized()

	def __str__(self):
		v = self.vocabulary
		lines = []
		for (p, l, r), lp in sorted(self.binary_rules.items()):
			lines.append(f"{v.symbol(p)} -> {v.symbol(l)} {v.symbol(r)} {lp:.6f}")
		for (p, c), lp in sorted(self.unary_rules.items()):
			lines.append(f"{v.symbol(p)} -> {v.symbol(c)} {lp:.6f}")
		for (p, w), lp in sorted(self.lexical_rules.items()):
			lines.append(f"{v.symbol(p)} -> {self.lexicon.symbol(w)} {lp:.6f}")
		return "\n".join(lines)


def _split_indices(index):
	if index == 0:
		return (0,)
	return (2 * index - 1, 2 * index)


class BiasedNoiseGenerator:
	"""
	Prefers the first rule of each sibling pair by `amount` (0.01 = 1%) and
	penalises the second by the same amount. Zero amount splits evenly.
	"""

	def __init__(self, amount):
		self.bias0 = math.log1p(amount)
		self.bias1 = math.log1p(-amount)

	def noise(self, count):
		noise = [0.0] * count
		for i in range(0, count - 1, 2):
			noise[i] = self.bias0
			noise[i + 1] = self.bias1
		return noise


class RandomNoiseGenerator(BiasedNoiseGenerator):
	"""
	As BiasedNoiseGenerator, but which rule of each pair is preferred is
	chosen at random.
	"""

	def __init__(self, amount, seed=None):
		super().__init__(amount)
		self.rng = np.random.default_rng(seed)

	def noise(self, count):
		noise = super().noise(count)
		for i in range(0, count - 1, 2):
			if self.rng.random() < 0.5:
				noise[i], noise[i + 1] = noise[i + 1], noise[i]
		return noise


ZERO_NOISE = BiasedNoiseGenerator(0.0)
