"""
Command-line interface: fit a count table and write shrunken estimates.

Example
-------
    dirmult-shrink batting_counts.csv --id-col playerID \\
        --categories Single Double Triple HR NonHit \\
        --weights 1 2 3 4 0 --results-path results/
"""
import argparse
import logging
import warnings
from pathlib import Path

from .config import FitOptions
from .constants import DEFAULT_MAX_ITERATIONS, DEFAULT_TOLERANCE
from .diagnostics import dispersion_table
from .dirichlet_multinomial import fit_dm_model
from .errors import InvalidInputError, NonConvergenceError
from .io import Paths, load_count_table, write_tables
from .shrinkage import shrink_matrix, weighted_scores

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dirmult-shrink',
        description='Fit a Dirichlet-multinomial prior to category counts and shrink per-entity proportions',
    )

    parser.add_argument(
        'counts_path',
        help='CSV/TSV/Excel table with one row per entity',
    )
    parser.add_argument(
        '--id-col',
        default=None,
        help='Column with entity ids (default: first column)',
    )
    parser.add_argument(
        '--categories',
        nargs='+',
        default=None,
        help='Count columns, in order (default: all other columns)',
    )
    parser.add_argument(
        '--weights',
        nargs='+',
        type=float,
        default=None,
        help='Per-category weights for a scalar score, e.g. 1 2 3 4 0 for slugging',
    )
    parser.add_argument(
        '--results-path',
        required=True,
        help='Path to output directory',
    )
    parser.add_argument(
        '--tolerance',
        type=float,
        default=DEFAULT_TOLERANCE,
        help='Relative convergence tolerance',
    )
    parser.add_argument(
        '--max-iterations',
        type=int,
        default=DEFAULT_MAX_ITERATIONS,
        help='Fixed-point iteration budget',
    )
    parser.add_argument(
        '--n-workers',
        type=int,
        default=1,
        help='Threads for the per-iteration row sums',
    )
    parser.add_argument(
        '--confidence-level',
        type=float,
        default=0.95,
        help='Level of the alpha confidence bounds',
    )
    parser.add_argument(
        '--format',
        choices=['csv', 'excel'],
        default='csv',
        help='Output format',
    )
    parser.add_argument(
        '-d', '--debug',
        action='store_true',
        help='Enable debug logging',
    )
    return parser


def main(argv=None) -> int:
    """Command-line entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    paths = Paths(counts_path=Path(args.counts_path), results_path=Path(args.results_path))

    try:
        options = FitOptions(
            tolerance=args.tolerance,
            max_iterations=args.max_iterations,
            n_workers=args.n_workers,
            confidence_level=args.confidence_level,
        )
        matrix = load_count_table(paths.counts_path, id_col=args.id_col, categories=args.categories)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always', NonConvergenceError)
            model = fit_dm_model(matrix, options=options)
        for w in caught:
            logger.warning(str(w.message))

        tables = {
            'alpha_parameters': model.parameter_table().set_index('category'),
            'shrunken_estimates': shrink_matrix(matrix, model),
            'dispersion_check': dispersion_table(matrix, model) if matrix.n_entities - matrix.n_degenerate > 1 else None,
        }
        if args.weights is not None:
            tables['shrunken_estimates']['score'] = weighted_scores(tables['shrunken_estimates'], args.weights)
    except InvalidInputError as exc:
        logger.error(f"Invalid input: {exc}")
        return 2

    write_tables({k: v for k, v in tables.items() if v is not None}, paths.results_path, format=args.format)

    logger.info(
        f"alpha = {dict(zip(model.categories, model.alpha.values.round(4)))}, "
        f"converged={model.converged}, iterations={model.diagnostics.n_iterations}"
    )
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
