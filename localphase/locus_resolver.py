# localphase
# Author: Xiao Chen <xchen@pacificbiosciences.com>


from .events import SPAN_DEL, LocusAllele, MergedLocus


def get_events_at_locus(pos, haplotypes, include_spanning=True):
    """
    Get the distinct events found at a position across haplotypes.
    Events starting upstream and covering pos are included when include_spanning
    is set. Deletions anchored at different positions stay separate.
    """
    events = []
    for haplotype in haplotypes:
        for event in haplotype.event_map.get_overlapping_events(pos):
            if include_spanning is False and event.pos != pos:
                continue
            if event not in events:
                events.append(event)
    return events


def get_allele_in_haplotype(pos, haplotype):
    """Get the allele a single haplotype carries at pos"""
    starting = haplotype.event_map.get_events_starting_at(pos)
    if starting != []:
        event = starting[0]
        return LocusAllele.explicit(event.ref, event.alt)
    if haplotype.event_map.get_spanning_events(pos) != []:
        return LocusAllele.spanning_deletion()
    return LocusAllele.reference()


def resolve_alleles_at_locus(
    pos, haplotypes, given_alleles=None, merge_given_alleles=False
):
    """
    Get the ordered, deduplicated alleles observed at pos.
    An upstream deletion covering pos contributes the spanning deletion
    symbol, not its own ref/alt pair.
    Given alleles starting at pos are kept when merge_given_alleles is set,
    with or without haplotype evidence.
    """
    alleles = []
    for haplotype in haplotypes:
        allele = get_allele_in_haplotype(pos, haplotype)
        if allele not in alleles:
            alleles.append(allele)
    if merge_given_alleles and given_alleles is not None:
        for event in given_alleles:
            if event.pos != pos:
                continue
            allele = LocusAllele.explicit(event.ref, event.alt)
            if allele not in alleles:
                alleles.append(allele)
    return alleles


def remap_allele(ref, alt, common_ref):
    """
    Extend alt so it is expressed against common_ref,
    e.g. A>G against AC becomes AC>GC
    """
    if common_ref.startswith(ref) is False:
        return None
    return alt + common_ref[len(ref) :]


def get_reference_base(pos, haplotypes):
    """Reference base at pos, read off an upstream event spanning it"""
    for haplotype in haplotypes:
        for event in haplotype.event_map.get_spanning_events(pos):
            return event.ref[pos - event.pos]
    return None


def merge_to_common_reference(contig, pos, alleles, ref=None):
    """
    Merge explicit alleles starting at the same position onto the longest
    reference allele, ref included when given. The spanning deletion,
    if present, is put last.
    """
    explicit = [a for a in alleles if a.kind == LocusAllele.EXPLICIT]
    refs = [a.ref for a in explicit]
    if ref is not None:
        refs.append(ref)
    if refs == []:
        common_ref = None
    else:
        common_ref = max(refs, key=len)
    if ref is not None and common_ref.startswith(ref) is False:
        raise ValueError(
            f"Reference allele {ref} at {contig}:{pos} is not compatible with {common_ref}"
        )
    alts = []
    for allele in explicit:
        remapped = remap_allele(allele.ref, allele.alt, common_ref)
        if remapped is None:
            raise ValueError(
                f"Reference allele {allele.ref} at {contig}:{pos} is not compatible with {common_ref}"
            )
        if remapped != common_ref and remapped not in alts:
            alts.append(remapped)
    if True in [a.is_spanning_deletion for a in alleles]:
        alts.append(SPAN_DEL)
    return MergedLocus(contig, pos, common_ref, tuple(alts))


def resolve_merged_locus(
    contig, pos, haplotypes, given_alleles=None, merge_given_alleles=False, ref=None
):
    """
    Resolve alleles at pos and merge them onto a common reference.
    Without ref or any event starting at pos, the reference base is read
    off an upstream deletion covering pos.
    """
    alleles = resolve_alleles_at_locus(
        pos,
        haplotypes,
        given_alleles=given_alleles,
        merge_given_alleles=merge_given_alleles,
    )
    if ref is None and LocusAllele.EXPLICIT not in [a.kind for a in alleles]:
        ref = get_reference_base(pos, haplotypes)
    return merge_to_common_reference(contig, pos, alleles, ref=ref)


def merged_locus_from_call(call):
    return MergedLocus(call.contig, call.pos, call.ref, call.alts)


def create_allele_mapper(merged_locus, pos, haplotypes, merge_spanning_deletion=True):
    """
    Map each allele of the merged locus to the haplotypes supporting it.
    Keys are ordered reference first, then alts, then the spanning deletion
    (added once a haplotype with an upstream deletion over pos is seen);
    haplotypes keep their input order.
    """
    if haplotypes == [] or haplotypes is None:
        raise ValueError("haplotypes should not be empty")
    ref = merged_locus.ref
    if ref is None:
        ref = get_reference_base(pos, haplotypes)
    if ref is None:
        raise ValueError(
            f"No reference allele at {merged_locus.contig}:{merged_locus.pos}"
        )
    result = {ref: []}
    for alt in merged_locus.alts:
        if alt != SPAN_DEL:
            result.setdefault(alt, [])

    for haplotype in haplotypes:
        overlapping = haplotype.event_map.get_overlapping_events(pos)
        if overlapping == []:
            result[ref].append(haplotype)
            continue
        starting = [a for a in overlapping if a.pos == pos]
        if starting != []:
            event = starting[0]
            remapped = remap_allele(event.ref, event.alt, ref)
            # haplotypes carrying an allele absent from the merged locus support nothing
            if remapped is not None and remapped != ref and remapped in result:
                result[remapped].append(haplotype)
        elif merge_spanning_deletion:
            result.setdefault(SPAN_DEL, []).append(haplotype)
        else:
            result[ref].append(haplotype)
    return result
