# localphase
# Author: Xiao Chen <xchen@pacificbiosciences.com>


import os
import json
from collections import namedtuple
from .events import Event, Haplotype, Genotype, VariantCall
from .phaser import PhaseAnnotator

Window = namedtuple("Window", "contig start end haplotypes given_alleles")

PHASING_FORMATS = [
    (
        PhaseAnnotator.PHASE_SET_KEY,
        1,
        "Integer",
        "Phasing set identifier shared by calls phased together",
    ),
    (
        PhaseAnnotator.PHASING_GT_KEY,
        1,
        "String",
        "Physical phasing haplotype information, describing how the alternate alleles are phased in relation to one another",
    ),
    (
        PhaseAnnotator.PHASING_ID_KEY,
        1,
        "String",
        "Physical phasing ID information, where each unique ID within a given sample (but not across samples) connects records within a phasing group",
    ),
]


def parse_event(entry, contig):
    """Events are given as [pos, ref, alt] or [contig, pos, ref, alt]"""
    if len(entry) == 3:
        pos, ref, alt = entry
    elif len(entry) == 4:
        contig, pos, ref, alt = entry
    else:
        raise Exception(f"Cannot parse event {entry}")
    return Event(contig, int(pos), ref.upper(), alt.upper())


def parse_window(window_entry):
    contig = window_entry["contig"]
    haplotypes = []
    for i, hap_entry in enumerate(window_entry.get("haplotypes", [])):
        events = [parse_event(a, contig) for a in hap_entry.get("events", [])]
        haplotypes.append(
            Haplotype(
                bases=hap_entry.get("bases", ""),
                events=events,
                name=hap_entry.get("name", f"hap{i + 1}"),
                is_ref=hap_entry.get("is_ref", False),
            )
        )
    given_alleles = [
        parse_event(a, contig) for a in window_entry.get("given_alleles", [])
    ]
    return Window(
        contig,
        int(window_entry["start"]),
        int(window_entry["end"]),
        haplotypes,
        given_alleles,
    )


def load_windows(window_file):
    """Read phasing windows and their haplotypes from a json file"""
    if os.path.exists(window_file) is False:
        raise Exception(f"File {window_file} not found.")
    with open(window_file) as f:
        window_json = json.load(f)
    if isinstance(window_json, dict):
        window_json = window_json.get("windows", [])
    return [parse_window(a) for a in window_json]


def add_phasing_header(header):
    """Declare the phasing FORMAT fields in a pysam VariantHeader"""
    for field_id, number, field_type, description in PHASING_FORMATS:
        if field_id not in header.formats:
            header.formats.add(field_id, number, field_type, description)
    return header


def record_to_call(record):
    """Convert a pysam VariantRecord into a VariantCall"""
    genotypes = []
    for sample in record.samples:
        sample_record = record.samples[sample]
        gt = sample_record.get("GT")
        if gt is None:
            gt = ()
        genotypes.append(Genotype(sample, gt, phased=sample_record.phased))
    return VariantCall(record.chrom, record.pos, record.alleles, genotypes)


def update_record(record, call):
    """Copy phasing results of a call back into its pysam VariantRecord"""
    for genotype in call.genotypes:
        if PhaseAnnotator.PHASE_SET_KEY not in genotype.attributes:
            continue
        sample_record = record.samples[genotype.sample]
        sample_record["GT"] = genotype.alleles
        sample_record.phased = genotype.phased
        for field_id, _, _, _ in PHASING_FORMATS:
            sample_record[field_id] = genotype.attributes[field_id]
    return record


def assign_records_to_windows(records, windows):
    """
    Get the indexes of records falling in each window.
    A record in overlapping windows goes to the first one.
    """
    window_records = [[] for _ in windows]
    for i, record in enumerate(records):
        for j, window in enumerate(windows):
            if record.chrom == window.contig and window.start <= record.pos <= window.end:
                window_records[j].append(i)
                break
    return window_records


def check_call_order(calls):
    positions = [a.pos for a in calls]
    if positions != sorted(positions):
        raise Exception("Calls are not sorted by position")
