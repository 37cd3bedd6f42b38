"""CLI wrapper for collective classification with label flipping.

Delegates to training.pipeline.run_pipeline using the shared
CollectiveConfig schema from training.common.

Usage:
    python -m collective.collective_training --train data/train.csv --test data/test.csv

Without ``--test`` the training table is split with ``--split-folds``
stratified folds (first fold = train, unless ``--invert-split-folds``).
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from .training.common import CollectiveConfig, ComparisonType, EvaluationType
from .training.learners import LEARNERS
from .training.pipeline import run_pipeline

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument(
        "--train",
        type=Path,
        required=True,
        help="CSV table with the labelled training instances.",
    )
    parser.add_argument(
        "--test",
        type=Path,
        default=None,
        help="CSV table with the unlabelled (test) instances. Labels, if present, are ignored for learning.",
    )
    parser.add_argument(
        "--class-column",
        type=str,
        default=None,
        help="Name of the class column (default: last column of the training table).",
    )
    parser.add_argument("-I", "--iterations", type=int, default=10, help="Number of iterations per restart.")
    parser.add_argument("-R", "--restarts", type=int, default=10, help="Number of restarts.")
    parser.add_argument("-S", "--seed", type=int, default=1)
    parser.add_argument(
        "--evaluation",
        type=str,
        default=EvaluationType.RANDOMWALK_BEST.value,
        choices=[e.value for e in EvaluationType],
        help="Which model serves predictions (hillclimbing also flips with the best model).",
    )
    parser.add_argument(
        "--comparison",
        type=str,
        default=ComparisonType.RMS_TRAIN.value,
        choices=[c.value for c in ComparisonType],
        help="Metric used for comparing models.",
    )
    parser.add_argument(
        "--flipper",
        type=str,
        default="TriangleFlipper",
        help='Flipping algorithm and options, e.g. "ConfidentFlipper -delta 0.6".',
    )
    parser.add_argument(
        "--learner",
        type=str,
        default="decision_tree",
        choices=sorted(LEARNERS),
        help="Base learner trained on the combined pool.",
    )
    parser.add_argument(
        "-U",
        "--update-training",
        action="store_true",
        help="Also flip the labels of the training instances.",
    )
    parser.add_argument(
        "--use-insight",
        action="store_true",
        help="Use the test labels for extra statistics (never for learning).",
    )
    parser.add_argument("--split-folds", type=int, default=0)
    parser.add_argument("-V", "--invert-split-folds", action="store_true")
    parser.add_argument(
        "--continue-on-failure",
        action="store_true",
        help="Skip to the next restart when the base learner fails.",
    )
    parser.add_argument(
        "--log",
        action="store_true",
        help="Write per-iteration diagnostic CSV files to <output-dir>/logs.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("outputs"),
        help="Base directory for experiment artefacts.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log per-iteration scores.")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


def parse_args(args: Optional[Sequence[str]] = None) -> CollectiveConfig:
    parsed = build_parser().parse_args(args=args)
    return CollectiveConfig(
        train_path=parsed.train,
        test_path=parsed.test,
        class_column=parsed.class_column,
        num_restarts=parsed.restarts,
        num_iterations=parsed.iterations,
        seed=parsed.seed,
        evaluation=EvaluationType(parsed.evaluation),
        comparison=ComparisonType(parsed.comparison),
        flipper=parsed.flipper,
        learner=parsed.learner,
        update_training=parsed.update_training,
        use_insight=parsed.use_insight,
        split_folds=parsed.split_folds,
        invert_split_folds=parsed.invert_split_folds,
        continue_on_failure=parsed.continue_on_failure,
        log=parsed.log,
        log_level="DEBUG" if parsed.verbose else parsed.log_level,
        log_dir=parsed.output_dir / "logs",
        output_dir=parsed.output_dir,
        trace_table=parsed.output_dir / "tables/collective_trace.csv",
        results_table=parsed.output_dir / "tables/collective_results.csv",
        predictions_table=parsed.output_dir / "tables/test_predictions.csv",
        curves_path=parsed.output_dir / "figures/collective_curves.png",
        summary_path=parsed.output_dir / "notes/run_summary.json",
    )


def main(args: Optional[Sequence[str]] = None) -> None:
    config = parse_args(args)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="[%(asctime)s] %(levelname)s:%(name)s:%(message)s",
    )
    metrics = run_pipeline(config)
    LOGGER.info("Collective training complete. Metrics:\n%s", json.dumps(metrics, indent=2))


if __name__ == "__main__":  # pragma: no cover
    main()
