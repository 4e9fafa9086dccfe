#train_grammar.py
#
# Learns a latent-variable grammar from a treebank with the split-merge
# procedure of Petrov et al. (2006), "Learning Accurate, Compact, and
# Interpretable Tree Annotation".
#
# Each cycle splits every nonterminal in two, trains the split grammar with EM
# constrained to the treebank trees, estimates the likelihood lost by undoing
# each split, re-merges the least useful fraction and runs a few more EM
# iterations on the merged grammar.
#
# The E-step can be spread over a multiprocessing pool. Every worker process
# has its own parser (and so its own chart buffer) and returns a partial
# count grammar; the partial counts are added together afterwards.

import logging
import math
import multiprocessing
import time
from collections import namedtuple

import numpy as np

from constraining_chart import ConstrainingChart
from fractional_count_grammar import FractionalCountGrammar
from grammar import RandomNoiseGenerator
from inside_outside import ConstrainedInsideOutsideParser
from treebank import induce_grammar, load_trees
from utility import GrammarMismatchException, ParseFailureException

EmIterationResult = namedtuple('EmIterationResult',
	['grammar', 'count_grammar', 'log_likelihood', 'failures', 'seconds'])

# Per-process state of pool workers.
PARAMS = {}


def initworker(grammar):
	"""Install the grammar and a fresh parser for a worker process."""
	PARAMS['parser'] = ConstrainedInsideOutsideParser(grammar)


def count_worker(constraining_charts):
	"""
	E-step over a share of the corpus. Returns (partial counts, log
	likelihood, number of sentences that could not be parsed).
	"""
	parser = PARAMS['parser']
	grammar = parser.grammar
	counts = FractionalCountGrammar(grammar.vocabulary, grammar.lexicon)
	log_likelihood = 0.0
	failures = 0
	for constraining_chart in constraining_charts:
		try:
			chart = parser.parse(constraining_chart)
		except ParseFailureException:
			failures += 1
			continue
		log_likelihood += chart.sentence_log_probability()
		parser.count_rule_occurrences(counts)
	return counts, log_likelihood, failures


def merge_cost_worker(args):
	constraining_charts, log_split_fraction = args
	parser = PARAMS['parser']
	merge_cost = np.zeros((len(parser.grammar.vocabulary) - 1) // 2)
	for constraining_chart in constraining_charts:
		try:
			parser.parse(constraining_chart)
		except ParseFailureException:
			continue
		parser.count_merge_cost(merge_cost, log_split_fraction)
	return merge_cost


class GrammarTrainer:

	def __init__(self):
		## Training schedule
		self.split_merge_cycles = 6
		self.em_iterations_per_cycle = 50
		self.em_iterations_after_merge = 20
		## Run one EM iteration on the Markov-0 grammar before the first split
		self.em_before_split = False
		## Fraction of the new splits re-merged in each cycle
		self.merge_fraction = 0.5
		## Rules with a lower log probability are pruned after each EM iteration
		self.minimum_rule_log_probability = -140.0
		## Amount of random noise added to rule probabilities at each split
		self.noise = 0.01
		## Random seed for the split noise; None picks one at random.
		self.seed = None
		## Direction in which n-ary treebank trees are binarized
		self.binarization = 'right'
		## Number of worker processes for the E-step; 1 runs in this process.
		self.workers = 1

		self.trees = []
		self.constraining_charts = []
		self.markov0_grammar = None
		## Grammar at the end of each completed cycle
		self.cycle_grammars = []

	def load_corpus(self, filename):
		return self.load(load_trees(filename, self.binarization))

	def load(self, trees):
		"""
		Induce the Markov-0 grammar from binarized trees and build a
		constraining chart for each of them. Returns the Markov-0 grammar.
		"""
		logging.info("Inducing Markov-0 grammar from %d trees", len(trees))
		self.markov0_grammar = induce_grammar(trees)
		logging.info("Markov-0 grammar size: %s", self.markov0_grammar.summary())
		self.trees = []
		self.constraining_charts = []
		for tree in trees:
			try:
				chart = ConstrainingChart(tree, self.markov0_grammar)
			except GrammarMismatchException as e:
				logging.warning("Skipping tree: %s", e)
				continue
			self.trees.append(tree)
			self.constraining_charts.append(chart)
		return self.markov0_grammar

	def _chunks(self):
		n = max(1, min(self.workers, len(self.constraining_charts)))
		return [self.constraining_charts[i::n] for i in range(n)]

	def _map(self, function, args, grammar):
		if self.workers <= 1:
			initworker(grammar)
			return list(map(function, args))
		with multiprocessing.Pool(processes=self.workers, initializer=initworker,
				initargs=(grammar,)) as pool:
			return pool.map(function, args)

	def count(self, grammar):
		"""
		E-step over the whole corpus. Returns (counts, log likelihood,
		failures).
		"""
		counts = FractionalCountGrammar(grammar.vocabulary, grammar.lexicon)
		log_likelihood = 0.0
		failures = 0
		for partial, partial_log_likelihood, partial_failures in self._map(count_worker, self._chunks(), grammar):
			counts.add(partial)
			log_likelihood += partial_log_likelihood
			failures += partial_failures
		if failures:
			logging.warning("%d sentences could not be parsed", failures)
		return counts, log_likelihood, failures

	def em_iteration(self, grammar):
		"""One EM iteration: expected counts under grammar, then re-estimation."""
		t0 = time.time()
		counts, log_likelihood, failures = self.count(grammar)
		new_grammar = counts.to_grammar(self.minimum_rule_log_probability, grammar.packing_function_class)
		return EmIterationResult(new_grammar, counts, log_likelihood, failures, time.time() - t0)

	def estimate_merge_cost(self, grammar, count_grammar):
		"""
		Estimated log likelihood lost over the corpus by merging each split
		pair (2i-1, 2i), indexed by i-1.
		"""
		log_split_fraction = count_grammar.log_split_fraction()
		args = [(chunk, log_split_fraction) for chunk in self._chunks()]
		merge_cost = np.zeros((len(grammar.vocabulary) - 1) // 2)
		for partial in self._map(merge_cost_worker, args, grammar):
			merge_cost += partial
		return merge_cost

	def merge(self, grammar, count_grammar):
		"""
		Merge back the merge_fraction of split pairs whose merging costs the
		least likelihood.
		"""
		merge_cost = self.estimate_merge_cost(grammar, count_grammar)
		order = np.argsort(merge_cost, kind='stable')
		number = int(math.floor(len(merge_cost) * self.merge_fraction + 0.5))
		indices = sorted(2 * (int(k) + 1) for k in order[:number])

		if logging.getLogger().isEnabledFor(logging.DEBUG):
			lines = []
			for rank, k in enumerate(order):
				if rank == number:
					lines.append("--------")
				lines.append("%11s  %12.6f" % (grammar.vocabulary.symbol(2 * int(k) + 1), merge_cost[k]))
			logging.debug("Merge costs:\n%s", "\n".join(lines))

		merged = grammar.merge(indices)
		logging.info("Merged %d nonterminals. Grammar size: %s", len(indices), merged.summary())
		return merged

	def _log_em_iteration(self, result, i):
		logging.info("Iteration: %2d  Likelihood: %.2f  EM Time: %.2fs  %s",
			i, result.log_likelihood, result.seconds, result.grammar.summary())

	def _run_em(self, grammar, iterations):
		result = None
		for i in range(1, iterations + 1):
			result = self.em_iteration(grammar)
			self._log_em_iteration(result, i)
			grammar = result.grammar
		return grammar, result

	def train(self):
		"""
		Run the split-merge cycles from the Markov-0 grammar and return the
		final grammar.
		"""
		if self.markov0_grammar is None:
			raise RuntimeError("No training corpus loaded")
		noise_generator = RandomNoiseGenerator(self.noise, self.seed)
		grammar = self.markov0_grammar
		self.cycle_grammars = []

		if self.em_before_split:
			logging.info("EM before the first split")
			grammar, _ = self._run_em(grammar, 1)

		for cycle in range(1, self.split_merge_cycles + 1):
			t0 = time.time()
			logging.info("=== Cycle %d ===", cycle)
			grammar = grammar.split(noise_generator)
			logging.info("Split grammar size: %s", grammar.summary())

			grammar, result = self._run_em(grammar, self.em_iterations_per_cycle)
			if result is None:
				count_grammar = self.count(grammar)[0]
			else:
				count_grammar = result.count_grammar

			grammar = self.merge(grammar, count_grammar)

			logging.info("Post-merge EM")
			grammar, _ = self._run_em(grammar, self.em_iterations_after_merge)
			self.cycle_grammars.append(grammar)
			logging.info("Completed cycle %d in %.2f s", cycle, time.time() - t0)

		return grammar
