# aggregation.py

import logging
import os
import re
from dataclasses import dataclass, field
from typing import List

from chunkgwas.errors import AggregationIncomplete

BASE_COLUMNS = ['CHR', 'POS', 'ID', 'REF', 'ALT']
STAT_COLUMNS = ['F', 'R2', 'P']
ARTIFACT_RE = re.compile(r'^chunk_(\d+)\.tsv$')


def make_header(interaction='none'):
    """
    Header line of the aggregated table. With an interaction covariate `v`
    each statistic X becomes X(v), X(GT), X(v:GT).
    """
    if interaction == 'none':
        stats = STAT_COLUMNS
    else:
        stats = [f"{col}({term})" for col in STAT_COLUMNS
                 for term in (interaction, 'GT', f"{interaction}:GT")]
    return '\t'.join(BASE_COLUMNS + stats) + '\n'


def chunk_sort_key(chunk_id):
    return int(chunk_id)


def collect_artifacts(tmp_dir):
    """Map chunk id -> chunk artifact path for every chunk_<id>.tsv in tmp_dir"""
    artifacts = {}
    if not os.path.isdir(tmp_dir):
        return artifacts
    for name in os.listdir(tmp_dir):
        match = ARTIFACT_RE.match(name)
        if match:
            artifacts[match.group(1)] = os.path.join(tmp_dir, name)
    return artifacts


def append_rows(src_path, out):
    """Copy a text file into a binary handle, ending it with a newline."""
    with open(src_path, 'rb') as src:
        data = src.read()
    if data and not data.endswith(b'\n'):
        data += b'\n'
    out.write(data)


@dataclass
class AggregateReport:
    output_path: str
    n_chunks: int
    missing_chunks: List[str] = field(default_factory=list)
    failed_regions: list = field(default_factory=list)
    sidecar_path: str = None

    @property
    def complete(self):
        return not self.missing_chunks and not self.failed_regions


def incomplete_path(output_path):
    return output_path + '.incomplete.tsv'


def write_incomplete_report(path, missing_chunks, failed_regions):
    with open(path, 'w') as out:
        out.write('KIND\tCHUNK\tREGION\tMESSAGE\n')
        for chunk_id in missing_chunks:
            out.write(f"missing_chunk\t{chunk_id}\t.\tno result file\n")
        for outcome in failed_regions:
            message = ' '.join(str(outcome.error).split())
            out.write(f"failed_region\t{outcome.chunk_id}\t{outcome.region}\t{message}\n")


def aggregate_results(artifacts, output_path, interaction='none', expected_ids=None,
                      failed_regions=(), strict=False):
    """
    Concatenate chunk artifacts in chunk order under a single header.

    artifacts: chunk id -> path. Rows inside an artifact are copied as they
    are. Missing expected chunks or failed regions make the result partial:
    an error under `strict`, otherwise a warning plus a sidecar listing
    what is missing.
    """
    failed_regions = sorted(failed_regions, key=lambda o: (chunk_sort_key(o.chunk_id), o.k))
    expected = set(artifacts) if expected_ids is None else set(expected_ids)
    unexpected = set(artifacts) - expected
    if unexpected:
        logging.warning(f"Ignoring {len(unexpected)} result file(s) of unknown chunks: "
                        f"{', '.join(sorted(unexpected, key=chunk_sort_key))}")
        artifacts = {k: v for k, v in artifacts.items() if k in expected}
    missing = sorted(expected - set(artifacts), key=chunk_sort_key)

    if missing or failed_regions:
        msg = (f"Aggregate is incomplete: {len(missing)} missing chunk(s), "
               f"{len(failed_regions)} failed region(s)")
        if strict:
            raise AggregationIncomplete(msg, missing, failed_regions)
        logging.warning(msg)

    ordered = sorted(artifacts, key=chunk_sort_key)
    out_dir = os.path.dirname(output_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    tmp_path = output_path + '.part'
    with open(tmp_path, 'wb') as out:
        out.write(make_header(interaction).encode())
        for chunk_id in ordered:
            append_rows(artifacts[chunk_id], out)
    os.replace(tmp_path, output_path)
    logging.info(f"Merged {len(ordered)} chunk result(s) into {output_path}")

    report = AggregateReport(output_path, len(ordered), missing, list(failed_regions))
    sidecar = incomplete_path(output_path)
    if report.complete:
        if os.path.exists(sidecar):
            os.remove(sidecar)
    else:
        write_incomplete_report(sidecar, missing, failed_regions)
        report.sidecar_path = sidecar
        logging.warning(f"Partial result, see {sidecar}")
    return report
