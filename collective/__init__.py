"""Collective classification with label flipping (overview)

The package improves a base learner trained on a small labelled table by
iteratively exploiting an unlabelled one:

1) Data loading (``collective.training.common``)
	- CSV tables become numpy-backed datasets sharing one schema; nominal
	  columns are mapped to category indices taken from the training table.
	- Without a test table the training set is split with stratified folds.

2) Label flipping (``collective.training.flippers``)
	- Pseudo-labels of the unlabelled rows are resampled from the current
	  model's predictions (simple, triangle or confidence-gated strategies),
	  with a per-instance history of predicted distributions.

3) Restarts and model selection (``collective.training.simple_collective``)
	- Randomised restarts re-draw the pseudo-labels from the class prior;
	  the best model under the chosen RMS/accuracy comparison is kept.

4) Pipeline and CLI (``collective.collective_training``)
	- Runs a supervised baseline and the collective optimiser side by side.

All runs write human-readable artifacts under ``outputs/`` (trace, results,
predictions, curves and a JSON summary) so that runs can be compared.
"""
