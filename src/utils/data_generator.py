# ========================
# src/utils/data_generator.py
# ========================

"""
Data Generation Utilities

Sample product-listing CSV generation with controlled defect injection.
"""

import csv
import random
import string
import logging
from typing import List, Dict, Any, Optional
from pathlib import Path

from ..pipeline.validation import REQUIRED_COLUMNS

logger = logging.getLogger(__name__)

class ListingDataGenerator:
    """
    Generates realistic listing datasets for exercising the ingestion pipeline.
    """

    DEFECT_TYPES = [
        'non_numeric_price', 'empty_rating', 'fractional_reviews',
        'negative_price', 'short_row'
    ]

    def __init__(self, seed: Optional[int] = None):
        """
        Initialize data generator.

        Args:
            seed (int): Random seed for reproducible data generation
        """
        self._random = random.Random(seed)
        self._initialize_data_patterns()
        logger.info(f"ListingDataGenerator initialized with seed: {seed}")

    def _initialize_data_patterns(self) -> None:
        """Initialize catalog patterns."""
        # Niche -> (price range, keyword pool)
        self.niches = {
            'electronics': ((9.99, 249.99), ['wireless mouse', 'usb c hub', 'bluetooth speaker', 'phone charger']),
            'kitchen': ((4.99, 89.99), ['silicone spatula', 'knife set', 'coffee grinder', 'measuring cups']),
            'fitness': ((7.99, 129.99), ['resistance bands', 'yoga mat', 'jump rope', 'foam roller']),
            'pets': ((3.99, 59.99), ['dog leash', 'cat toy', 'pet bed', 'chew toy']),
            'office': ((2.99, 199.99), ['desk organizer', 'gel pens', 'monitor stand', 'sticky notes']),
        }
        self.brands = ['Acme', 'Zentro', 'Northwind', 'Lumora', 'Kestrel', 'Brightline', 'Oakridge']

    def generate_dataset(self,
                        file_path: str,
                        num_rows: int,
                        defect_rate: float = 0.1) -> Dict[str, Any]:
        """
        Generate a listing dataset with controlled defect injection.

        Args:
            file_path (str): Output CSV file path
            num_rows (int): Number of data rows to generate
            defect_rate (float): Fraction of rows carrying an intentional defect

        Returns:
            dict: Generation statistics
        """
        logger.info(f"Generating {num_rows:,} listing rows with {defect_rate:.1%} defect rate...")

        stats = self._new_stats(num_rows, defect_rate)
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(REQUIRED_COLUMNS)

            for i in range(num_rows):
                writer.writerow(self._generate_single_record(defect_rate, stats))

                if (i + 1) % 10000 == 0:
                    logger.debug(f"Generated {i + 1:,} records")

        self._finalize_stats(stats)
        logger.info(f"Dataset generated: {file_path}")
        logger.info(f"Defect breakdown: {stats['defect_types']}")
        return stats

    def generate_large_dataset_chunked(self,
                                     file_path: str,
                                     total_rows: int,
                                     chunk_size: int = 100000,
                                     defect_rate: float = 0.1) -> Dict[str, Any]:
        """
        Generate very large datasets in chunks, logging as each chunk is written.

        Args:
            file_path (str): Output file path
            total_rows (int): Total number of rows to generate
            chunk_size (int): Rows per chunk
            defect_rate (float): Fraction of rows carrying a defect

        Returns:
            dict: Generation statistics
        """
        logger.info(f"Generating large dataset: {total_rows:,} rows in chunks of {chunk_size:,}")

        stats = self._new_stats(total_rows, defect_rate)
        stats['chunk_size'] = chunk_size
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(REQUIRED_COLUMNS)

            rows_written = 0
            chunks_written = 0
            while rows_written < total_rows:
                chunk_rows = min(chunk_size, total_rows - rows_written)
                writer.writerows(
                    self._generate_single_record(defect_rate, stats) for _ in range(chunk_rows)
                )
                rows_written += chunk_rows
                chunks_written += 1
                logger.info(f"Chunk {chunks_written} complete: {rows_written:,}/{total_rows:,} rows")

        stats['chunks_written'] = chunks_written
        self._finalize_stats(stats)
        logger.info(f"Large dataset generation complete: {file_path}")
        return stats

    def _generate_single_record(self, defect_rate: float, stats: Dict[str, Any]) -> List[str]:
        """Generate a single record, possibly carrying one defect."""
        rng = self._random
        niche = rng.choice(list(self.niches))
        (low, high), keyword_pool = self.niches[niche]

        record = {
            'asin': 'B0' + ''.join(rng.choices(string.ascii_uppercase + string.digits, k=8)),
            'price': f"{rng.uniform(low, high):.2f}",
            'reviews': str(int(rng.paretovariate(1.2) * 10)),
            'rating': f"{rng.uniform(2.5, 5.0):.1f}",
            'conversion_rate': f"{rng.uniform(0.005, 0.2):.4f}",
            'click_through_rate': f"{rng.uniform(0.001, 0.08):.4f}",
            'brands': rng.choice(self.brands),
            'keywords': ', '.join(rng.sample(keyword_pool, k=rng.randint(1, 2))),
            'niche': niche,
        }

        defect = None
        if rng.random() < defect_rate:
            defect = rng.choice(self.DEFECT_TYPES)
            self._inject_defect(record, defect)
            stats['rows_with_defects'] += 1
            stats['defect_types'][defect] = stats['defect_types'].get(defect, 0) + 1

        cells = [record[name] for name in REQUIRED_COLUMNS]
        if defect == 'short_row':
            cells = cells[:-1]
        return cells

    def _inject_defect(self, record: Dict[str, str], defect: str) -> None:
        """Apply one defect to a record in place."""
        if defect == 'non_numeric_price':
            record['price'] = self._random.choice([f"${record['price']}", 'N/A', 'abc'])
        elif defect == 'empty_rating':
            record['rating'] = ''
        elif defect == 'fractional_reviews':
            record['reviews'] = f"{record['reviews']}.5"
        elif defect == 'negative_price':
            record['price'] = f"-{record['price']}"

    def _new_stats(self, total_rows: int, defect_rate: float) -> Dict[str, Any]:
        return {
            'total_rows': total_rows,
            'defect_rate': defect_rate,
            'rows_with_defects': 0,
            'defect_types': {}
        }

    def _finalize_stats(self, stats: Dict[str, Any]) -> None:
        """Derive expected pipeline outcomes from the injected defects."""
        total = stats['total_rows']
        short_rows = stats['defect_types'].get('short_row', 0)
        stats['defect_rate_actual'] = stats['rows_with_defects'] / total if total else 0.0
        stats['expected_rows'] = total - short_rows
        stats['expected_row_errors'] = stats['rows_with_defects']
