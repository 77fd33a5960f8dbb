# localphase
# Author: Xiao Chen <xchen@pacificbiosciences.com>


import itertools
import logging
from collections import namedtuple
from enum import Enum


class PhaseSetSizeError(Exception):
    """A phase set with fewer than two members was constructed"""


class PhaseGroup(Enum):
    PHASE_01 = "0|1"
    PHASE_10 = "1|0"

    @property
    def alt_index(self):
        """Genotype slot that holds the alt allele in this orientation"""
        return 1 if self is PhaseGroup.PHASE_01 else 0

    def flip(self):
        if self is PhaseGroup.PHASE_01:
            return PhaseGroup.PHASE_10
        return PhaseGroup.PHASE_01


PhaseSet = namedtuple("PhaseSet", "phase_set_id members")


def trim_common_suffix(ref, alt):
    """Remove trailing bases shared by ref and alt, keeping at least one base"""
    while len(ref) > 1 and len(alt) > 1 and ref[-1] == alt[-1]:
        ref = ref[:-1]
        alt = alt[:-1]
    return ref, alt


def get_haplotypes_with_call(call, haplotypes):
    """
    Get haplotypes whose events explain the alt allele of a call.
    Calls with more than one site-specific alt are not phased.
    """
    site_alts = call.site_specific_alts()
    if len(site_alts) > 1:
        return frozenset()
    haps_with_call = set()
    if site_alts == []:
        if call.has_spanning_deletion():
            for hap in haplotypes:
                for event in hap.event_map.get_spanning_events(call.pos):
                    if event.contig == call.contig:
                        haps_with_call.add(hap)
                        break
        return frozenset(haps_with_call)
    target = (call.contig, call.pos) + trim_common_suffix(call.ref, site_alts[0])
    for hap in haplotypes:
        for event in hap.event_map.get_events_starting_at(call.pos):
            if (event.contig, event.pos) + trim_common_suffix(
                event.ref, event.alt
            ) == target:
                haps_with_call.add(hap)
                break
    return frozenset(haps_with_call)


def construct_haplotype_mapping(calls, haplotypes):
    """
    For each call, get the set of haplotypes carrying its alt allele.
    Returns a list aligned with calls.
    """
    haplotypes = list(haplotypes)
    return [get_haplotypes_with_call(call, haplotypes) for call in calls]


def get_total_haplotypes(haplotype_map):
    """Number of distinct haplotypes carrying at least one call"""
    all_haps = set()
    for haps in haplotype_map:
        all_haps.update(haps)
    return len(all_haps)


def check_phase_set(phase_set):
    if len(phase_set.members) < 2:
        raise PhaseSetSizeError(
            "Somehow we have a group of phased variants that has fewer than 2 members"
        )


def construct_phase_sets(haplotype_map):
    """
    Scan calls left to right and group adjacent informative calls into phase sets.
    A call is informative if it is carried by some but not all haplotypes.
    Two informative calls on the same haplotypes keep the orientation; calls on
    complementary haplotypes flip it. Anything else ends the current block.
    """
    total_haps = get_total_haplotypes(haplotype_map)
    phase_sets = []
    block = []
    last_haps = None

    def close_block():
        if len(block) >= 2:
            phase_set = PhaseSet(block[0][0], tuple(block))
            check_phase_set(phase_set)
            phase_sets.append(phase_set)

    for i, haps in enumerate(haplotype_map):
        if len(haps) == 0 or len(haps) == total_haps:
            continue
        if last_haps is None:
            block = [(i, PhaseGroup.PHASE_01)]
        else:
            previous_group = block[-1][1]
            if haps == last_haps:
                block.append((i, previous_group))
            elif haps.isdisjoint(last_haps) and len(haps | last_haps) == total_haps:
                block.append((i, previous_group.flip()))
            else:
                close_block()
                block = [(i, PhaseGroup.PHASE_01)]
        last_haps = haps
    close_block()
    return phase_sets


def construct_phase_set_mapping(haplotype_map):
    """Get {call_index: (phase_set_id, PhaseGroup)} for all phased calls"""
    phase_set_mapping = {}
    for phase_set in construct_phase_sets(haplotype_map):
        for index, group in phase_set.members:
            phase_set_mapping.setdefault(index, (phase_set.phase_set_id, group))
    return phase_set_mapping


class PhaseAnnotator:
    """
    Write phase orientation and phase set identifiers into genotypes.
    Phase set identifiers are drawn from one counter per annotator, so
    windows annotated by the same annotator never share an identifier.
    """

    PHASE_SET_KEY = "PS"
    PHASING_GT_KEY = "PGT"
    PHASING_ID_KEY = "PID"

    def __init__(self, first_phase_set_id=0):
        self._counter = itertools.count(first_phase_set_id)

    @staticmethod
    def orient_alleles(alleles, alt_index, phase_group):
        """Put the phasing alt in the genotype slot given by the orientation"""
        if len(alleles) != 2 or alleles[0] == alleles[1] or None in alleles:
            return tuple(alleles)
        if alt_index is not None and alt_index in alleles:
            other = [a for a in alleles if a != alt_index][0]
            if phase_group.alt_index == 1:
                return (other, alt_index)
            return (alt_index, other)
        if phase_group is PhaseGroup.PHASE_10:
            return (alleles[1], alleles[0])
        return tuple(alleles)

    @classmethod
    def phase_call(cls, call, unique_id, phase_group, phase_set_id):
        alt_index = call.phasing_alt_index()
        genotypes = []
        for genotype in call.genotypes:
            alleles = cls.orient_alleles(genotype.alleles, alt_index, phase_group)
            attributes = dict(genotype.attributes)
            if genotype.is_hom_var():
                attributes[cls.PHASING_GT_KEY] = "1|1"
            else:
                attributes[cls.PHASING_GT_KEY] = phase_group.value
            attributes[cls.PHASING_ID_KEY] = unique_id
            attributes[cls.PHASE_SET_KEY] = phase_set_id
            genotypes.append(
                genotype._replace(alleles=alleles, phased=True, attributes=attributes)
            )
        return call._replace(genotypes=tuple(genotypes))

    def annotate(self, calls, phase_sets):
        """
        Return a copy of calls with the members of each phase set phased.
        Nothing is returned if any phase set is invalid.
        """
        for phase_set in phase_sets:
            check_phase_set(phase_set)
        phased_calls = list(calls)
        for phase_set in phase_sets:
            phase_set_id = next(self._counter)
            first_index = phase_set.members[0][0]
            unique_id = calls[first_index].unique_id()
            for index, group in phase_set.members:
                phased_calls[index] = self.phase_call(
                    calls[index], unique_id, group, phase_set_id
                )
        return phased_calls


def phase_calls(calls, haplotypes, annotator=None):
    """Phase a window of calls sorted by position using the haplotypes carrying them"""
    if annotator is None:
        annotator = PhaseAnnotator()
    haplotype_map = construct_haplotype_mapping(calls, haplotypes)
    phase_sets = construct_phase_sets(haplotype_map)
    logging.debug(f"{len(phase_sets)} phase sets from {len(calls)} calls")
    return annotator.annotate(calls, phase_sets)
