import random

import pytest

from chunkgwas.aggregation import (
    aggregate_results,
    collect_artifacts,
    incomplete_path,
    make_header,
)
from chunkgwas.chunking import Region
from chunkgwas.dispatch import RegionOutcome
from chunkgwas.errors import AggregationIncomplete


def write_artifacts(tmp_dir, n, width=2):
    tmp_dir.mkdir(exist_ok=True)
    artifacts = {}
    for i in range(n):
        chunk_id = str(i).zfill(width)
        path = tmp_dir / f"chunk_{chunk_id}.tsv"
        path.write_text(f"chr1\t{i * 10 + 2}\t.\tA\tG\t1\t0.1\t0.5\n"
                        f"chr1\t{i * 10 + 1}\t.\tA\tG\t2\t0.2\t0.4\n")
        artifacts[chunk_id] = str(path)
    return artifacts


def test_header_without_interaction():
    assert make_header("none") == "CHR\tPOS\tID\tREF\tALT\tF\tR2\tP\n"


def test_header_with_interaction():
    expected = ("CHR POS ID REF ALT F(age) F(GT) F(age:GT) R2(age) R2(GT) R2(age:GT) "
                "P(age) P(GT) P(age:GT)")

    assert make_header("age").rstrip("\n").split("\t") == expected.split(" ")


def test_rows_follow_chunk_order_not_insertion_order(tmp_path):
    artifacts = write_artifacts(tmp_path / "tmp", 12)
    shuffled = list(artifacts.items())
    random.Random(7).shuffle(shuffled)
    out = tmp_path / "out.tsv"

    aggregate_results(dict(shuffled), str(out))

    lines = out.read_text().splitlines()
    assert lines[0].startswith("CHR\tPOS")
    # rows inside a chunk keep their order (2 before 1)
    positions = [int(line.split("\t")[1]) for line in lines[1:]]
    assert positions == [p for i in range(12) for p in (i * 10 + 2, i * 10 + 1)]


def test_aggregation_is_idempotent(tmp_path):
    artifacts = write_artifacts(tmp_path / "tmp", 5)
    out = tmp_path / "out.tsv"

    aggregate_results(artifacts, str(out), interaction="sex")
    first = out.read_bytes()
    aggregate_results(dict(reversed(list(artifacts.items()))), str(out), interaction="sex")

    assert out.read_bytes() == first


def test_missing_newline_is_added(tmp_path):
    a = tmp_path / "chunk_0.tsv"
    b = tmp_path / "chunk_1.tsv"
    a.write_text("row0")
    b.write_text("row1\n")
    out = tmp_path / "out.tsv"

    aggregate_results({"0": str(a), "1": str(b)}, str(out))

    assert out.read_text().splitlines()[1:] == ["row0", "row1"]


def test_empty_artifacts_give_header_only(tmp_path):
    empty = tmp_path / "chunk_0.tsv"
    empty.write_text("")
    out = tmp_path / "out.tsv"

    report = aggregate_results({"0": str(empty)}, str(out))

    assert out.read_text() == make_header()
    assert report.complete


def test_collect_artifacts_ignores_partials(tmp_path):
    write_artifacts(tmp_path, 3, width=1)
    (tmp_path / "chunk_1.2.tsv").write_text("partial\n")
    (tmp_path / "chunk_1.tsv.part").write_text("partial\n")

    assert sorted(collect_artifacts(str(tmp_path))) == ["0", "1", "2"]
    assert collect_artifacts(str(tmp_path / "nowhere")) == {}


def test_missing_chunk_writes_sidecar(tmp_path):
    artifacts = write_artifacts(tmp_path / "tmp", 3)
    del artifacts["01"]
    out = tmp_path / "out.tsv"

    report = aggregate_results(artifacts, str(out), expected_ids=["00", "01", "02"])

    assert not report.complete
    assert report.missing_chunks == ["01"]
    sidecar = incomplete_path(str(out))
    assert report.sidecar_path == sidecar
    assert "missing_chunk\t01" in open(sidecar).read()
    assert len(out.read_text().splitlines()) == 1 + 4


def test_failed_region_is_reported(tmp_path):
    artifacts = write_artifacts(tmp_path / "tmp", 2)
    failure = RegionOutcome("01", 2, Region("chr2", 5, 5), error="exited with status 3")
    out = tmp_path / "out.tsv"

    report = aggregate_results(artifacts, str(out), failed_regions=[failure])

    assert report.failed_regions == [failure]
    lines = open(report.sidecar_path).read().splitlines()
    assert lines[1] == "failed_region\t01\tchr2:5-5\texited with status 3"


def test_complete_run_removes_stale_sidecar(tmp_path):
    artifacts = write_artifacts(tmp_path / "tmp", 2)
    out = tmp_path / "out.tsv"
    sidecar = tmp_path / "out.tsv.incomplete.tsv"
    sidecar.write_text("old\n")

    report = aggregate_results(artifacts, str(out))

    assert report.complete
    assert not sidecar.exists()


def test_strict_mode_raises_and_publishes_nothing(tmp_path):
    artifacts = write_artifacts(tmp_path / "tmp", 2)
    out = tmp_path / "out.tsv"

    with pytest.raises(AggregationIncomplete) as excinfo:
        aggregate_results(artifacts, str(out), expected_ids=["00", "01", "02"], strict=True)

    assert excinfo.value.missing_chunks == ["02"]
    assert not out.exists()


def test_unknown_chunks_are_ignored(tmp_path):
    artifacts = write_artifacts(tmp_path / "tmp", 3)
    out = tmp_path / "out.tsv"

    report = aggregate_results(artifacts, str(out), expected_ids=["00", "01"])

    assert report.n_chunks == 2
    assert report.complete
