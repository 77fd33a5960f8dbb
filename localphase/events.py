# localphase
# Author: Xiao Chen <xchen@pacificbiosciences.com>


from collections import namedtuple

SPAN_DEL = "*"


class Event(namedtuple("Event", "contig pos ref alt")):
    """A genomic edit carried by a haplotype, compared by value"""

    __slots__ = ()

    @property
    def end(self):
        return self.pos + len(self.ref) - 1

    def overlaps(self, pos):
        return self.pos <= pos <= self.end

    def spans_from_upstream(self, pos):
        """The event starts before pos and its reference bases cover pos"""
        return self.pos < pos <= self.end

    def __str__(self):
        return f"{self.contig}:{self.pos}_{self.ref}_{self.alt}"


class EventMap:
    """
    Events of one haplotype, sorted by start position.
    Value-equal events are stored once.
    """

    def __init__(self, events=()):
        self.events = []
        for event in events:
            if event not in self.events:
                self.events.append(event)
        self.events = sorted(self.events, key=lambda x: x.pos)

    @classmethod
    def of(cls, *events):
        return cls(events)

    def __iter__(self):
        return iter(self.events)

    def __len__(self):
        return len(self.events)

    def __contains__(self, event):
        return event in self.events

    def __repr__(self):
        return f"EventMap({', '.join(str(a) for a in self.events)})"

    def get_overlapping_events(self, pos):
        """Events whose reference span includes pos"""
        return [a for a in self.events if a.overlaps(pos)]

    def get_events_starting_at(self, pos):
        return [a for a in self.events if a.pos == pos]

    def get_spanning_events(self, pos):
        """Events starting upstream of pos whose reference span covers pos"""
        return [a for a in self.events if a.spans_from_upstream(pos)]


class Haplotype:
    """
    A candidate haplotype. Only its event map is used for phasing;
    haplotypes are distinct population members even if they carry the same events.
    """

    def __init__(self, bases="", events=(), name=None, is_ref=False):
        self.bases = bases
        self.event_map = events if isinstance(events, EventMap) else EventMap(events)
        self.name = name
        self.is_ref = is_ref

    def __repr__(self):
        label = self.name if self.name is not None else self.bases
        return f"Haplotype({label})"


class LocusAllele(namedtuple("LocusAllele", "kind ref alt")):
    """
    An allele observed at a position: the reference, an explicit (ref, alt)
    pair, or the symbolic spanning deletion.
    """

    __slots__ = ()
    REFERENCE = "reference"
    EXPLICIT = "explicit"
    SPANNING_DELETION = "spanning_deletion"

    @classmethod
    def reference(cls):
        return cls(cls.REFERENCE, None, None)

    @classmethod
    def explicit(cls, ref, alt):
        return cls(cls.EXPLICIT, ref, alt)

    @classmethod
    def spanning_deletion(cls):
        return cls(cls.SPANNING_DELETION, None, SPAN_DEL)

    @property
    def is_reference(self):
        return self.kind == self.REFERENCE

    @property
    def is_spanning_deletion(self):
        return self.kind == self.SPANNING_DELETION


MergedLocus = namedtuple("MergedLocus", "contig pos ref alts")


class Genotype(namedtuple("Genotype", "sample alleles phased attributes")):
    __slots__ = ()

    def __new__(cls, sample, alleles, phased=False, attributes=None):
        return super().__new__(
            cls, sample, tuple(alleles), phased, dict(attributes or {})
        )

    def is_het(self):
        called = [a for a in self.alleles if a is not None]
        return len(called) == 2 and called[0] != called[1]

    def is_hom_var(self):
        called = [a for a in self.alleles if a is not None]
        return len(called) > 0 and len(set(called)) == 1 and called[0] != 0

    def genotype_string(self):
        sep = "|" if self.phased else "/"
        return sep.join("." if a is None else str(a) for a in self.alleles)


class VariantCall(namedtuple("VariantCall", "contig pos alleles genotypes")):
    __slots__ = ()

    def __new__(cls, contig, pos, alleles, genotypes=()):
        return super().__new__(cls, contig, pos, tuple(alleles), tuple(genotypes))

    @property
    def ref(self):
        return self.alleles[0]

    @property
    def alts(self):
        return self.alleles[1:]

    def site_specific_alts(self):
        """Alternate alleles other than the spanning deletion"""
        return [a for a in self.alts if a != SPAN_DEL]

    def has_spanning_deletion(self):
        return SPAN_DEL in self.alts

    def phasing_alt_index(self):
        """
        Index of the allele whose haplotype membership drives phasing:
        the single site-specific alt, or the spanning deletion if it is the
        only alt. None for calls with several site-specific alts.
        """
        site_alts = self.site_specific_alts()
        if len(site_alts) == 1:
            return self.alleles.index(site_alts[0])
        if site_alts == [] and self.has_spanning_deletion():
            return self.alleles.index(SPAN_DEL)
        return None

    def unique_id(self):
        alt = self.alts[0] if self.alts else "."
        return f"{self.pos}_{self.ref}_{alt}"
