import pytest
import os
import numpy as np
import pysam
from localphase.events import VariantCall
from localphase.prepare_vcf import Window
from localphase.read_tagger import (
    Region,
    annotate_reads_with_regions,
    get_best_alleles,
    annotate_reads_with_supported_alleles,
    RegionBamTagger,
)


def make_read(name, start=100, seq="ACGTACGTAA", flag=0):
    read = pysam.AlignedSegment()
    read.query_name = name
    read.query_sequence = seq
    read.flag = flag
    read.reference_id = 0
    read.reference_start = start
    read.mapping_quality = 60
    read.cigartuples = [(0, len(seq))]
    read.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return read


def write_bam(bam, reads):
    header = {"HD": {"VN": "1.6", "SO": "coordinate"}, "SQ": [{"SN": "chr1", "LN": 1000}]}
    with pysam.AlignmentFile(bam, "wb", header=header) as bamh:
        for read in reads:
            bamh.write(read)
    pysam.index(bam)


class TestReadTagger(object):
    def test_region(self):
        region = Region("chr1", 10, 20)
        assert str(region) == "chr1:10-20"
        assert region.pad(5) == Region("chr1", 5, 25)
        assert region.pad(50) == Region("chr1", 1, 70)

    def test_annotate_reads_with_regions(self):
        reads = [make_read("read1"), make_read("read2")]
        alignment_region = Region("chr1", 1, 1000)
        callable_region = Region("chr1", 100, 500)
        annotate_reads_with_regions(reads, alignment_region, callable_region)
        for read in reads:
            assert read.get_tag("AR") == "chr1:1-1000"
            assert read.get_tag("CR") == "chr1:100-500"

    def test_get_best_alleles(self):
        likelihoods = [[-1.0, -5.0, -2.0], [-3.0, -1.0, -2.0]]
        best, confidence = get_best_alleles(likelihoods)
        assert list(best) == [0, 1, 0]
        assert confidence == pytest.approx([2.0, 4.0, 0.0])

        best, confidence = get_best_alleles([[-1.0, -2.0]])
        assert list(best) == [0, 0]
        assert np.isinf(confidence).all()

        with pytest.raises(ValueError):
            get_best_alleles([-1.0, -2.0])

    def test_annotate_reads_with_supported_alleles(self):
        call = VariantCall("chr1", 150, ["A", "G"])
        reads = [make_read(f"read{i}") for i in range(4)]
        # columns are reads, rows are alleles
        likelihoods = [
            [-1.0, -5.0, -1.0, -1.1],
            [-5.0, -1.0, -1.0, -1.0],
        ]
        annotate_reads_with_supported_alleles(call, reads, likelihoods)
        assert reads[0].get_tag("XA") == "chr1:150=0"
        assert reads[1].get_tag("XA") == "chr1:150=1"
        assert reads[2].has_tag("XA") is False
        assert reads[3].has_tag("XA") is False

        second_call = VariantCall("chr1", 160, ["C", "T"])
        annotate_reads_with_supported_alleles(second_call, reads, likelihoods)
        assert reads[0].get_tag("XA") == "chr1:150=0, chr1:160=0"

        annotate_reads_with_supported_alleles(
            VariantCall("chr1", 170, ["C", "T"]),
            reads,
            likelihoods,
            informative_threshold=0.05,
        )
        assert reads[3].get_tag("XA") == "chr1:170=1"

    def test_mismatched_reads(self):
        call = VariantCall("chr1", 150, ["A", "G"])
        with pytest.raises(ValueError):
            annotate_reads_with_supported_alleles(
                call, [make_read("read1")], [[-1.0, -2.0], [-2.0, -1.0]]
            )

    def test_region_bam_tagger(self, tmp_path):
        bam = str(tmp_path / "input.bam")
        reads = [
            make_read("read1", start=75),
            make_read("read2", start=120),
            make_read("read3", start=130, flag=256),
            make_read("read4", start=700),
        ]
        write_bam(bam, reads)
        windows = [
            Window("chr1", 100, 150, [], []),
            Window("chr1", 140, 200, [], []),
        ]
        tagger = RegionBamTagger(bam, str(tmp_path), "HG002", padding=20)
        tagged_bam = tagger.write_bam(windows)
        assert tagged_bam == os.path.join(str(tmp_path), "HG002.localphase.bam")
        assert os.path.exists(tagged_bam + ".bai")
        assert os.path.exists(tagger.tmp_bam) is False
        with pysam.AlignmentFile(tagged_bam, "rb") as bamh:
            tagged = {read.query_name: read for read in bamh}
        assert sorted(tagged) == ["read1", "read2"]
        assert tagged["read1"].get_tag("AR") == "chr1:80-170"
        assert tagged["read1"].get_tag("CR") == "chr1:100-150"
        assert tagged["read2"].get_tag("CR") == "chr1:100-150"
