import argparse
import json
import logging
import os
import sys

from cdrmotif.api import find_motifs, write_results
from cdrmotif.config import create_config
from cdrmotif.enrichment import select_enriched
from cdrmotif.io import read_stats, write_table


def setup_logging(verbose: bool):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    logging.getLogger("numba").setLevel(logging.WARNING)


def _add_threshold_options(group) -> None:
    group.add_argument(
        "--degree-threshold",
        type=int,
        default=2,
        help="Minimum neighborhood degree of an enriched sequence. (default: %(default)s)",
    )
    group.add_argument(
        "--p-threshold",
        type=float,
        default=0.05,
        help="Enrichment p-value must be strictly below this value. (default: %(default)s)",
    )


def create_arg_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        description="cdrmotif: infer CDR3 sequence motifs of epitope-specific immune receptors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
 Examples:
   # Full motif inference
   cdrmotif run --stats degree_stats.tsv --annotations annotations.tsv \\
     --background background_pwms.tsv --out-dir motifs --min-cluster-size 5 --jobs 4

   # Only flag enriched sequences
   cdrmotif select --stats degree_stats.tsv --degree-threshold 3 --output enriched.tsv
         """,
    )
    subparsers = parser.add_subparsers(dest="mode", help="Operation mode", required=True)

    run_parser = subparsers.add_parser("run", help="Cluster enriched sequences and build background-normalized PWMs.")
    run_io_group = run_parser.add_argument_group("Input/Output Options")
    run_io_group.add_argument(
        "--stats", required=True, help="Table of sequence_id, degree, p_value, species, chain, epitope."
    )
    run_io_group.add_argument(
        "--annotations", required=True, help="Table of sequence_id, v_segment, j_segment, species, chain, epitope."
    )
    run_io_group.add_argument(
        "--background",
        required=True,
        help="Background table of species, chain, v_segment, j_segment, length, position, residue, count.",
    )
    run_io_group.add_argument("--out-dir", required=True, help="Directory for output tables.")
    run_io_group.add_argument("--meme", action="store_true", help="Also write scorable motifs in MEME format.")

    run_group = run_parser.add_argument_group("Motif Options")
    _add_threshold_options(run_group)
    run_group.add_argument(
        "--min-cluster-size",
        type=int,
        default=5,
        help="Smallest connected component kept as a motif cluster. (default: %(default)s)",
    )
    run_group.add_argument(
        "--normalization-scale",
        type=float,
        default=1.0,
        help="Divisor of the background-normalized information content. (default: %(default)s)",
    )

    run_technical_group = run_parser.add_argument_group("Technical Options")
    run_technical_group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging to standard output for detailed execution tracking.",
    )
    run_technical_group.add_argument(
        "--jobs",
        type=int,
        default=1,
        help="Number of parallel jobs to run. Set to -1 to use all available CPU cores. (default: %(default)s)",
    )
    run_technical_group.add_argument(
        "--chunk-size",
        type=int,
        default=512,
        help="Query sequences per all-pairs distance task. (default: %(default)s)",
    )

    select_parser = subparsers.add_parser("select", help="Flag enriched sequences from degree/p-value statistics.")
    select_parser.add_argument(
        "--stats", required=True, help="Table of sequence_id, degree, p_value, species, chain, epitope."
    )
    select_parser.add_argument("--output", help="Write the flagged table here instead of standard output.")
    _add_threshold_options(select_parser)
    select_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging to standard output for detailed execution tracking.",
    )

    return parser


def validate_inputs(args) -> None:
    """Validate input files."""
    logger = logging.getLogger(__name__)
    paths = [("Statistics", args.stats)]
    if args.mode == "run":
        paths += [("Annotation", args.annotations), ("Background", args.background)]

    for name, path in paths:
        if not os.path.exists(path):
            logger.error(f"{name} file not found: {path}")
            sys.exit(1)


def main_cli():
    """Main CLI entry point."""
    parser = create_arg_parser()

    if len(sys.argv) == 1:
        parser.print_help(sys.stderr)
        sys.exit(1)

    args = parser.parse_args()
    setup_logging(args.verbose)
    validate_inputs(args)

    try:
        if args.mode == "select":
            flags = select_enriched(read_stats(args.stats), args.degree_threshold, args.p_threshold)
            if args.output:
                write_table(flags, args.output)
                print(json.dumps({"sequences": int(len(flags)), "enriched": int(flags["enriched"].sum())}))
            else:
                flags.to_csv(sys.stdout, sep="\t", index=False)
            return

        config = create_config(
            degree_threshold=args.degree_threshold,
            p_threshold=args.p_threshold,
            min_cluster_size=args.min_cluster_size,
            normalization_scale=args.normalization_scale,
            n_jobs=args.jobs,
            pair_chunk_size=args.chunk_size,
        )
        if args.verbose:
            logger = logging.getLogger(__name__)
            logger.info("=" * 60)
            logger.info(f"Statistics: {args.stats}")
            logger.info(f"Annotations: {args.annotations}")
            logger.info(f"Background: {args.background}")
            logger.info(f"Config: {config}")
            logger.info("=" * 60)

        results = find_motifs(args.stats, args.annotations, args.background, config=config)
        paths = write_results(results, args.out_dir, meme=args.meme)

        report = results.overview()
        report["outputs"] = paths
        print(json.dumps(report))

    except Exception as e:
        print(f"ERROR: Pipeline execution failed: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main_cli()
