# localphase
# Author: Xiao Chen <xchen@pacificbiosciences.com>


import os
import pysam
import numpy as np
from collections import namedtuple

ALIGNMENT_REGION_TAG = "AR"
CALLABLE_REGION_TAG = "CR"
SUPPORTED_ALLELES_TAG = "XA"
LOG10_INFORMATIVE_THRESHOLD = 0.2


class Region(namedtuple("Region", "contig start end")):
    __slots__ = ()

    def __str__(self):
        return f"{self.contig}:{self.start}-{self.end}"

    def pad(self, padding):
        return Region(self.contig, max(1, self.start - padding), self.end + padding)


def annotate_reads_with_regions(reads, alignment_region, callable_region):
    """Tag reads with the padded region they were aligned in and the callable region"""
    for read in reads:
        read.set_tag(ALIGNMENT_REGION_TAG, str(alignment_region), "Z")
        read.set_tag(CALLABLE_REGION_TAG, str(callable_region), "Z")
    return reads


def get_best_alleles(log10_likelihoods):
    """
    For an alleles x reads matrix of log10 likelihoods, return the best allele
    index per read (ties go to the lowest index) and the margin over the
    second best allele.
    """
    likelihoods = np.asarray(log10_likelihoods, dtype=float)
    if likelihoods.ndim != 2 or likelihoods.shape[0] == 0:
        raise ValueError("Likelihoods must be a non-empty alleles x reads matrix")
    best = np.argmax(likelihoods, axis=0)
    if likelihoods.shape[0] == 1:
        confidence = np.full(likelihoods.shape[1], np.inf)
    else:
        ordered = np.sort(likelihoods, axis=0)
        confidence = ordered[-1] - ordered[-2]
    return best, confidence


def annotate_reads_with_supported_alleles(
    call, reads, log10_likelihoods, informative_threshold=LOG10_INFORMATIVE_THRESHOLD
):
    """
    Append contig:pos=allele_index to the XA tag of every read that
    informatively supports one allele of the call.
    """
    best, confidence = get_best_alleles(log10_likelihoods)
    if len(best) != len(reads):
        raise ValueError(
            f"Likelihoods cover {len(best)} reads but {len(reads)} reads were given"
        )
    for read, allele_index, margin in zip(reads, best, confidence):
        if margin < informative_threshold:
            continue
        attribute = f"{call.contig}:{call.pos}={int(allele_index)}"
        if read.has_tag(SUPPORTED_ALLELES_TAG):
            attribute = read.get_tag(SUPPORTED_ALLELES_TAG) + ", " + attribute
        read.set_tag(SUPPORTED_ALLELES_TAG, attribute, "Z")
    return reads


class RegionBamTagger:
    """
    Write reads overlapping each phasing window to a bam,
    tagged with the window regions
    """

    def __init__(self, bam, outdir, sample_id, padding=100, reference_fasta=None):
        self.bam = bam
        self.outdir = outdir
        self.sample_id = sample_id
        self.padding = padding
        self.reference_fasta = reference_fasta
        self.tmp_bam = os.path.join(self.outdir, self.sample_id + "_tmp.bam")
        self.tagged_bam = os.path.join(
            self.outdir, self.sample_id + ".localphase.bam"
        )

    def write_bam(self, windows):
        bamh = pysam_handle(self.bam, self.reference_fasta)
        out_bamh = pysam.AlignmentFile(self.tmp_bam, "wb", template=bamh)
        written = set()
        for window in windows:
            callable_region = Region(window.contig, window.start, window.end)
            alignment_region = callable_region.pad(self.padding)
            for read in bamh.fetch(
                alignment_region.contig,
                alignment_region.start - 1,
                alignment_region.end,
            ):
                if read.is_secondary:
                    continue
                # reads shared by neighboring windows keep the first window's tags
                read_key = (read.query_name, read.flag, read.reference_start)
                if read_key in written:
                    continue
                written.add(read_key)
                annotate_reads_with_regions([read], alignment_region, callable_region)
                out_bamh.write(read)
        out_bamh.close()
        bamh.close()
        pysam.sort("-o", self.tagged_bam, self.tmp_bam)
        pysam.index(self.tagged_bam)
        os.remove(self.tmp_bam)
        return self.tagged_bam


def pysam_handle(input_file, reference_fasta=None):
    """Get pysam handle for bam/cram files"""
    if input_file.lower().endswith("cram"):
        return pysam.AlignmentFile(input_file, "rc", reference_filename=reference_fasta)
    return pysam.AlignmentFile(input_file, "rb")
