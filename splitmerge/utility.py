#utility.py
#
# Log-domain arithmetic, exceptions and tree utilities shared by the
# split-merge grammar learner.
#
# Trees are nested tuples (label, child, ...) whose leaves are terminal strings,
# so a preterminal is (label, word), a unary node (label, subtree) and a binary
# node (label, left, right).

import math

LOG_ONE_HALF = math.log(0.5)

# Label prefix of the nodes introduced by binarization.
FACTORED_PREFIX = '@'


class ParseFailureException(Exception):
	"""
	The constrained parse assigns zero probability to the sentence.
	"""
	pass


class GrammarMismatchException(ValueError):
	"""
	A tree contains a symbol or production the grammar cannot represent.
	"""
	pass


class TreeFormatException(ValueError):
	pass


def log_sum(a, b):
	"""
	Return log(exp(a) + exp(b)).

	log_sum(-inf, -inf) is -inf; a NaN argument is a programming error.
	"""
	assert not (math.isnan(a) or math.isnan(b)), "NaN passed to log_sum"
	if a == -math.inf and b == -math.inf:
		return -math.inf
	if a < b:
		a, b = b, a
	return a + math.log1p(math.exp(b - a))


def _tokenize(s):
	return s.replace('(', ' ( ').replace(')', ' ) ').split()


def string_to_tree(s):
	"""
	Read a bracketed tree like "(S (A a) (B b))" into nested tuples.

	A Penn treebank style unlabelled outer bracket around a single tree,
	"( (S ...) )", is removed.

	Raises:
		TreeFormatException: if the brackets are unbalanced, a node has no
		children, or a node mixes a terminal with other children.
	"""
	tokens = _tokenize(s)
	if not tokens:
		raise TreeFormatException("Empty tree string")
	tree, position = _read_node(tokens, 0, s)
	if position != len(tokens):
		raise TreeFormatException(f"Trailing material after tree: {s}")
	if isinstance(tree, str):
		raise TreeFormatException(f"Not a bracketed tree: {s}")
	return tree


def _read_node(tokens, position, s):
	if tokens[position] != '(':
		raise TreeFormatException(f"Expected '(' at token {position}: {s}")
	position += 1
	label = None
	if position < len(tokens) and tokens[position] not in ('(', ')'):
		label = tokens[position]
		position += 1
	children = []
	while True:
		if position >= len(tokens):
			raise TreeFormatException(f"Unbalanced brackets: {s}")
		token = tokens[position]
		if token == ')':
			position += 1
			break
		if token == '(':
			child, position = _read_node(tokens, position, s)
		else:
			child = token
			position += 1
		children.append(child)

	if not children:
		raise TreeFormatException(f"Node {label} has no children: {s}")
	if len(children) > 1 and any(isinstance(c, str) for c in children):
		raise TreeFormatException(f"Node {label} mixes terminals and subtrees: {s}")
	if label is None:
		if len(children) == 1 and not isinstance(children[0], str):
			return children[0], position
		raise TreeFormatException(f"Unlabelled node: {s}")
	return (label,) + tuple(children), position


def tree_to_string(tree):
	if isinstance(tree, str):
		return tree
	return "(" + " ".join([tree[0]] + [tree_to_string(child) for child in tree[1:]]) + ")"


def is_preterminal(tree):
	return len(tree) == 2 and isinstance(tree[1], str)


def collect_yield(tree):
	"""List of the terminals of the tree, left to right."""
	if isinstance(tree, str):
		return [tree]
	result = []
	for child in tree[1:]:
		result.extend(collect_yield(child))
	return result


def count_leaves(tree):
	if isinstance(tree, str):
		return 1
	return sum(count_leaves(child) for child in tree[1:])


def preorder(tree):
	"""Generate the internal nodes of a tree in pre-order."""
	stack = [tree]
	while stack:
		node = stack.pop()
		if isinstance(node, str):
			continue
		yield node
		stack.extend(reversed(node[1:]))


def unary_chain_height(tree):
	"""
	Number of unary productions below this node before reaching a binary
	node or a preterminal. A preterminal has height 0.
	"""
	height = 0
	while len(tree) == 2 and not isinstance(tree[1], str):
		height += 1
		tree = tree[1]
	return height


def max_unary_chain_height(tree):
	return max(unary_chain_height(node) for node in preorder(tree))


def binarize(tree, direction='right'):
	"""
	Factor every node with more than two children into binary nodes.

	Right binarization turns (X a b c) into (X a (@X b c)); left binarization
	into (X (@X a b) c).
	"""
	if direction not in ('right', 'left'):
		raise ValueError(f"Unknown binarization direction: {direction}")
	if isinstance(tree, str):
		return tree
	label = tree[0]
	children = [binarize(child, direction) for child in tree[1:]]
	factored = label if label.startswith(FACTORED_PREFIX) else FACTORED_PREFIX + label
	if direction == 'right':
		while len(children) > 2:
			children = children[:-2] + [(factored, children[-2], children[-1])]
	else:
		while len(children) > 2:
			children = [(factored, children[0], children[1])] + children[2:]
	return (label,) + tuple(children)


def unbinarize(tree):
	"""Splice the nodes introduced by binarize back into their parents."""
	if isinstance(tree, str):
		return tree
	children = []
	for child in tree[1:]:
		child = unbinarize(child)
		if not isinstance(child, str) and child[0].startswith(FACTORED_PREFIX):
			children.extend(child[1:])
		else:
			children.append(child)
	return (tree[0],) + tuple(children)


def strip_subcategories(tree):
	"""Replace split labels like NP_3 by their base label NP."""
	if isinstance(tree, str):
		return tree
	return (split_symbol_name(tree[0])[0],) + tuple(strip_subcategories(c) for c in tree[1:])


def split_symbol_name(symbol):
	"""
	Split a subcategorised symbol into its root and subcategory index.

	"NP_3" gives ("NP", 3); a symbol without a numeric suffix gives (symbol, None).
	"""
	root, sep, suffix = symbol.rpartition('_')
	if sep and root and suffix.isdigit():
		return root, int(suffix)
	return symbol, None
