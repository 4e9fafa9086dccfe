#treebank.py
#
# Reading a bracketed treebank, one tree per line, and inducing the initial
# Markov-0 (unsplit) grammar from its rule counts.

import logging

from fractional_count_grammar import FractionalCountGrammar
from split_vocabulary import SplitVocabulary, SymbolSet
from utility import TreeFormatException, binarize, is_preterminal, preorder, string_to_tree


def read_trees(lines, binarization='right'):
	"""
	Parse bracketed trees, one per line, binarizing each in the given
	direction ('right', 'left' or None to keep the trees as they are).
	Blank lines and lines starting with '#' are ignored; malformed trees are
	logged and skipped.
	"""
	trees = []
	for lineno, line in enumerate(lines, 1):
		line = line.strip()
		if not line or line[0] == '#':
			continue
		try:
			tree = string_to_tree(line)
		except TreeFormatException as e:
			logging.warning("Skipping malformed tree on line %d: %s", lineno, e)
			continue
		if binarization is not None:
			tree = binarize(tree, binarization)
		trees.append(tree)
	return trees


def load_trees(filename, binarization='right'):
	with open(filename) as inf:
		trees = read_trees(inf, binarization)
	logging.info("Loaded %d trees from %s", len(trees), filename)
	return trees


def induce_count_grammar(trees):
	"""
	Count the rules of a list of binarized trees.

	The root label of the first tree is the start symbol; nonterminals and
	terminals are indexed in order of first observation.

	Returns:
		FractionalCountGrammar over a base SplitVocabulary.
	"""
	if not trees:
		raise ValueError("Cannot induce a grammar from an empty treebank")
	nonterminals = {trees[0][0]: None}
	words = {}
	for tree in trees:
		for node in preorder(tree):
			nonterminals.setdefault(node[0], None)
			if is_preterminal(node):
				words.setdefault(node[1], None)
			elif len(node) > 3:
				raise ValueError(f"Tree is not binarized: node {node[0]} has {len(node) - 1} children")

	vocabulary = SplitVocabulary(list(nonterminals))
	lexicon = SymbolSet(list(words))
	counts = FractionalCountGrammar(vocabulary, lexicon)
	for tree in trees:
		for node in preorder(tree):
			parent = vocabulary.index(node[0])
			if len(node) == 3:
				counts.increment_binary_count(parent, vocabulary.index(node[1][0]), vocabulary.index(node[2][0]))
			elif is_preterminal(node):
				counts.increment_lexical_count(parent, lexicon.index(node[1]))
			else:
				counts.increment_unary_count(parent, vocabulary.index(node[1][0]))
	return counts


def induce_grammar(trees, packing_function_class=None):
	"""Markov-0 grammar: relative frequencies of the rules of the trees."""
	counts = induce_count_grammar(trees)
	if packing_function_class is None:
		return counts.to_grammar()
	return counts.to_grammar(packing_function_class=packing_function_class)
