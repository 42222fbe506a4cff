#!/usr/bin/env python3
# ========================
# main.py
# ========================

"""
Main Entry Point for the Listing CSV Ingestion Pipeline

Ingests a listing CSV (generating a sample one when no path is given),
serving repeated runs of an unchanged file from the result cache.

Usage:
    python main.py [csv_path] [batch_size]
"""

import sys
import logging
from pathlib import Path
from typing import List, Optional

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from src.pipeline import IngestionError, IngestionOptions, IngestionPipeline, create_cache_store
from src.utils import Config, ListingDataGenerator, setup_logging

def main(argv: Optional[List[str]] = None) -> int:
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
    logger.info("LISTING CSV INGESTION PIPELINE - MAIN EXECUTION")
    logger.info("=" * 60)

    try:
        batch_size = int(argv[1]) if len(argv) > 1 else config.DEFAULT_BATCH_SIZE
        if not 0 < batch_size <= config.MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {config.MAX_BATCH_SIZE}")
    except ValueError as e:
        logger.error(f"Invalid batch size: {e}")
        print("Usage: python main.py [csv_path] [batch_size]")
        return 2

    config.ensure_directories()

    if argv:
        input_file = argv[0]
    else:
        input_file = config.DEFAULT_INPUT_FILE
        if not Path(input_file).exists():
            logger.info("No input given, generating sample data...")
            generator = ListingDataGenerator(seed=42)
            generation_stats = generator.generate_dataset(
                file_path=input_file,
                num_rows=config.DEFAULT_SAMPLE_ROWS
            )
            logger.info(f"Sample data generated: {generation_stats}")

    pipeline = IngestionPipeline(cache=create_cache_store(config), config=config)

    if not pipeline.validate_input(input_file):
        logger.error("Input validation failed. Exiting.")
        return 1

    options = IngestionOptions(
        batch_size=batch_size,
        on_progress=lambda snapshot: logger.debug(f"Progress: {snapshot.to_dict()}")
    )

    try:
        result = pipeline.process(input_file, options)
    except IngestionError as e:
        logger.error(f"Ingestion failed ({e.kind.value}): {e.message}")
        print(f"\nIngestion failed: {e.message}")
        return 1

    _print_execution_summary(input_file, result, config.ERROR_SAMPLE_LIMIT)
    return 0

def _print_execution_summary(input_file: str, result, sample_limit: int) -> None:
    """Print final execution summary."""
    stats = result.stats
    summary = result.error_summary(sample_limit)

    print("\n" + "=" * 70)
    print("INGESTION SUMMARY")
    print("=" * 70)
    print(f"   • Input file: {input_file}")
    print(f"   • Served from cache: {'yes' if stats.from_cache else 'no'}")
    print(f"   • Rows ingested: {len(result.rows):,}")
    print(f"   • Row errors: {summary['error_count']:,}")
    for message in summary['sampled_errors']:
        print(f"       - {message}")
    if not stats.from_cache:
        print(f"   • Batches: {stats.batch_count:,}")
        print(f"   • Processing time: {stats.processing_time_seconds:.2f} seconds")
        print(f"   • Peak memory: {stats.memory_peak_bytes / (1024 * 1024):.2f} MB")
    print("=" * 70)

if __name__ == '__main__':
    sys.exit(main())
