#!/usr/bin/env python3
# ========================
# main.py
# ========================

"""
Main Entry Point for the Charcoal Pipeline

Runs the derivation and binning passes over a raw sample extract. Without an
existing extract, a synthetic one is generated first.

Usage:
    python main.py [extract.csv [site_list.csv]]
"""

import sys
import logging
from pathlib import Path

from src.charcoal import CharcoalPipeline
from src.utils import Config, setup_logging, DataGenerator


def main(argv=None):
    """Main execution function."""
    argv = sys.argv[1:] if argv is None else argv
    config = Config()

    setup_logging(
        log_level=config.LOG_LEVEL,
        log_file="pipeline.log",
        log_dir="logs"
    )

    logger = logging.getLogger(__name__)
    logger.info("=" * 60)
    logger.info("CHARCOAL PIPELINE - MAIN EXECUTION")
    logger.info("=" * 60)

    try:
        config.ensure_directories()

        input_file = argv[0] if argv else config.DEFAULT_INPUT_FILE
        site_list_file = argv[1] if len(argv) > 1 else None

        generation_stats = None
        if not argv and not Path(input_file).exists():
            logger.info("Step 1: Generating synthetic extract...")
            generator = DataGenerator(seed=42, sentinel=config.MISSING_SENTINEL)
            generation_stats = generator.generate_dataset(
                file_path=input_file,
                num_sites=config.DEFAULT_SAMPLE_SITES,
                site_list_path=config.DEFAULT_SITE_LIST
            )
            site_list_file = config.DEFAULT_SITE_LIST
            logger.info(f"Synthetic extract generated: {generation_stats}")

        logger.info("Step 2: Running pipeline...")
        pipeline = CharcoalPipeline(
            input_file=input_file,
            output_dir=config.DEFAULT_OUTPUT_DIR,
            site_list_file=site_list_file,
            config=config
        )

        if not pipeline.validate_input():
            logger.error("Input validation failed. Exiting.")
            return 1

        estimates = pipeline.estimate_processing_time()
        if estimates:
            logger.info(f"Processing estimates: {estimates}")

        results = pipeline.run()
        _print_execution_summary(results, generation_stats)

        logger.info("Pipeline execution completed successfully!")
        return 0

    except Exception as e:
        logger.error(f"Pipeline execution failed: {e}", exc_info=True)
        return 1


def _print_execution_summary(results: dict, generation_stats) -> None:
    """Print final execution summary."""
    print("\n" + "=" * 70)
    print("PIPELINE EXECUTION SUMMARY")
    print("=" * 70)

    if generation_stats:
        print("Synthetic data:")
        print(f"   - Sites generated: {generation_stats['total_sites']:,}")
        print(f"   - Samples generated: {generation_stats['total_samples']:,}")
        print(f"   - Injected anomalies: {generation_stats['anomaly_types']}")

    derivation = results['processing_stats']
    binning = results['binning_stats']
    quality = results['data_quality_stats']

    print("\nDerivation:")
    print(f"   - Rows parsed: {quality['records_parsed']:,} of {quality['records_processed']:,}")
    print(f"   - Sites derived: {derivation['sites_derived']:,}")
    print(f"   - Sites without influx: {derivation['sites_suppressed']:,}")
    for name, count in quality['flag_counts'].items():
        if count:
            print(f"   - {name}: {count} sites")

    print(f"\nBinning ({results['transform']}, step {results['bin_step']:g}):")
    print(f"   - Sites binned: {binning['sites_binned']:,} of {binning['sites_requested']:,}")
    print(f"   - Sites skipped: {binning['sites_skipped'] + binning['sites_missing_input']:,}")
    print(f"   - Bins written: {binning['bins_written']:,}")

    print("\nOutputs:")
    for output_type, file_path in results['saved_files'].items():
        print(f"   - {output_type.replace('_', ' ').title()}: {file_path}")
    print("=" * 70)


if __name__ == '__main__':
    sys.exit(main())
