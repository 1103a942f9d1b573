import os
import stat
import textwrap

import pysam
import pytest

from chunkgwas.chunking import Chunk
from chunkgwas.variant_processing import Position

VCF_HEADER = """\
##fileformat=VCFv4.2
##contig=<ID=chr1,length=1000>
##contig=<ID=chr2,length=1000>
##contig=<ID=chr3,length=1000>
#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO
"""

# Writes one row per region, fails on chr2 when FAIL_CHR2 is set.
FAKE_TEST = """\
#!/bin/sh
while [ $# -gt 0 ]; do
  case "$1" in
    --region) region="$2"; shift 2;;
    --interaction) inter="$2"; shift 2;;
    --output) out="$2"; shift 2;;
    *) shift;;
  esac
done
if [ -n "$FAIL_CHR2" ]; then
  case "$region" in
    chr2:*) echo "not enough individuals" >&2; exit 3;;
  esac
fi
printf '%s\\t%s\\t.\\tA\\tG\\t0.5\\t0.1\\t0.01\\n' "$region" "$inter" > "$out"
"""


def make_chunk(index, *positions, width=1):
    return Chunk(index, str(index).zfill(width), tuple(Position(c, p) for c, p in positions))


def write_script(path, body):
    path.write_text(textwrap.dedent(body))
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def make_vcf(tmp_path):
    """Write a bgzipped, tabix-indexed VCF with the given (chrom, pos) records."""
    def _make(positions, name="calls.vcf"):
        path = tmp_path / name
        lines = [f"{chrom}\t{pos}\t.\tA\tG\t.\tPASS\t.\n" for chrom, pos in positions]
        path.write_text(VCF_HEADER + "".join(lines))
        return pysam.tabix_index(str(path), preset="vcf", force=True)
    return _make


@pytest.fixture
def fake_test_cmd(tmp_path):
    return write_script(tmp_path / "fake_test.sh", FAKE_TEST)


@pytest.fixture
def tables(tmp_path):
    pheno = tmp_path / "pheno.tsv"
    cov = tmp_path / "cov.tsv"
    pheno.write_text("id\tp1\ts1\t0.1\n")
    cov.write_text("id\tage\ns1\t30\n")
    return str(pheno), str(cov)
