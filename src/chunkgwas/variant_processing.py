# variant_processing.py

import logging
import os
from collections import namedtuple

import pysam

from chunkgwas.errors import SourceUnreadable

Position = namedtuple('Position', ['chrom', 'pos'])

INDEX_SUFFIXES = ('.tbi', '.csi')


def is_vcf_file(file_path):
    """Check if the file is in VCF or BCF format"""
    return file_path.endswith('.vcf') or file_path.endswith('.vcf.gz') or file_path.endswith('.bcf')


def find_index(vcf_file, index_file=None):
    """
    Return the index path of a variant file, or None if there is none.
    """
    if index_file:
        return index_file if os.path.exists(index_file) else None
    for suffix in INDEX_SUFFIXES:
        candidate = vcf_file + suffix
        if os.path.exists(candidate):
            return candidate
    return None


class PositionIndex:
    """
    Ordered (CHROM, POS) stream of an indexed variant file.

    Every iteration reopens the file, so the stream can be read more than
    once (e.g. a counting pass followed by the chunking pass). Records are
    returned in file order without sorting or deduplication.
    """

    def __init__(self, vcf_file, index_file=None):
        self.vcf_file = vcf_file
        self.index_file = index_file
        self.check()

    def check(self):
        """Raise SourceUnreadable if the file or its index is not usable."""
        if not os.path.exists(self.vcf_file):
            raise SourceUnreadable(f"Variant file not found: {self.vcf_file}")
        if not is_vcf_file(self.vcf_file):
            logging.warning(f"Unexpected extension for variant file: {self.vcf_file}")
        index = find_index(self.vcf_file, self.index_file)
        if index is None:
            raise SourceUnreadable(f"No .tbi/.csi index found for {self.vcf_file}")
        self.index_file = index

    def _open(self):
        try:
            return pysam.VariantFile(self.vcf_file, index_filename=self.index_file)
        except (OSError, ValueError) as e:
            raise SourceUnreadable(f"Cannot open {self.vcf_file}: {e}") from e

    def __iter__(self):
        with self._open() as vcf:
            for rec in vcf:
                yield Position(rec.chrom, rec.pos)

    def count(self):
        """Number of records in the file (one full pass)."""
        n = sum(1 for _ in self)
        logging.info(f"Extracted {n} positions from {self.vcf_file}")
        return n
