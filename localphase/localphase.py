# localphase
# Author: Xiao Chen <xchen@pacificbiosciences.com>


import os
import argparse
import json
import yaml
import logging
import datetime
import traceback
import pysam
import multiprocessing as mp
from argparse import RawTextHelpFormatter
from collections import namedtuple
from functools import partial
import localphase
from localphase.locus_resolver import (
    create_allele_mapper,
    merged_locus_from_call,
    resolve_merged_locus,
)
from localphase.phaser import (
    PhaseAnnotator,
    PhaseSetSizeError,
    construct_haplotype_mapping,
    construct_phase_sets,
)
from localphase.prepare_vcf import (
    add_phasing_header,
    assign_records_to_windows,
    check_call_order,
    load_windows,
    record_to_call,
    update_record,
)
from localphase.read_tagger import Region, RegionBamTagger

logging.basicConfig(level=logging.INFO)


class LocalPhase:
    WindowResult = namedtuple(
        "WindowResult", "haplotype_names haplotype_map phase_sets allele_support"
    )

    def __init__(self):
        self.config = None

    @staticmethod
    def get_version():
        with open(os.path.join(os.path.dirname(__file__), "__init__.py")) as f:
            for line in f:
                if "version" in line:
                    return line.split('"')[1]
        return None

    def parse_configs(self, config_file=None):
        """
        Parse config files.
        Packaged defaults are read first and overridden by a user config.
        """
        default_config = os.path.join(os.path.dirname(__file__), "data", "config.yaml")
        with open(default_config, "r") as f:
            self.config = yaml.safe_load(f)
        if config_file is not None:
            with open(config_file, "r") as f:
                user_config = yaml.safe_load(f)
            if user_config is None:
                user_config = {}
            for key in user_config:
                if key not in self.config:
                    logging.warning(
                        f"{key} is not a valid config parameter and will be skipped..."
                    )
                else:
                    self.config[key] = user_config[key]
        return self.config

    @staticmethod
    def get_call_allele_support(window, call, config):
        """The haplotypes supporting each allele of one call"""
        allele_mapper = create_allele_mapper(
            merged_locus_from_call(call),
            call.pos,
            window.haplotypes,
            merge_spanning_deletion=config["merge_spanning_deletion"],
        )
        merged_locus = resolve_merged_locus(
            call.contig,
            call.pos,
            window.haplotypes,
            given_alleles=window.given_alleles,
            merge_given_alleles=config["merge_given_alleles"],
            ref=call.ref,
        )
        return {
            "haplotype_alleles": list(merged_locus.alts),
            "supporting_haplotypes": {
                allele: [hap.name for hap in haps]
                for allele, haps in allele_mapper.items()
            },
        }

    @staticmethod
    def get_allele_support(window, calls, config):
        """
        For each call, the haplotypes supporting each of its alleles.
        Calls whose alleles cannot be merged get an empty summary.
        """
        allele_support = []
        for call in calls:
            if window.haplotypes == []:
                allele_support.append({})
                continue
            try:
                allele_support.append(
                    LocalPhase.get_call_allele_support(window, call, config)
                )
            except ValueError as e:
                logging.warning(
                    f"Skipping allele support for {call.contig}:{call.pos}: {e}"
                )
                allele_support.append({})
        return allele_support

    @staticmethod
    def process_window(window, calls, config):
        """Find haplotypes carrying each call and build phase sets for one window"""
        check_call_order(calls)
        haplotype_map = construct_haplotype_mapping(calls, window.haplotypes)
        phase_sets = construct_phase_sets(haplotype_map)
        return LocalPhase.WindowResult(
            [hap.name for hap in window.haplotypes],
            [sorted(hap.name for hap in haps) for haps in haplotype_map],
            phase_sets,
            LocalPhase.get_allele_support(window, calls, config),
        )

    @staticmethod
    def process_window_catch_error(window_and_calls, config):
        window, calls = window_and_calls
        region = Region(window.contig, window.start, window.end)
        try:
            return LocalPhase.process_window(window, calls, config)
        except PhaseSetSizeError:
            logging.error(
                f"Inconsistent phase sets in {region}, calls are left unphased...See error message below"
            )
            traceback.print_exc()
        except Exception:
            logging.error(f"Error phasing {region}...See error message below")
            traceback.print_exc()
        return None

    @staticmethod
    def summarize_window(window, result, phased_calls):
        """Summarize the phasing of one window for the json output"""
        call_summary = []
        for i, call in enumerate(phased_calls):
            phase_set = None
            phase = None
            for genotype in call.genotypes:
                if PhaseAnnotator.PHASE_SET_KEY in genotype.attributes:
                    phase_set = genotype.attributes[PhaseAnnotator.PHASE_SET_KEY]
                    phase = genotype.attributes[PhaseAnnotator.PHASING_GT_KEY]
            call_info = {
                "variant": f"{call.pos}_{call.ref}_{','.join(call.alts)}",
                "haplotypes_with_call": result.haplotype_map[i],
                "phase_set": phase_set,
                "phase": phase,
            }
            call_info.update(result.allele_support[i])
            call_summary.append(call_info)
        return {
            "region": str(Region(window.contig, window.start, window.end)),
            "haplotypes": result.haplotype_names,
            "phase_sets": len(result.phase_sets),
            "calls": call_summary,
        }

    def process_sample(self, vcf, windows, outdir, sample_id, args, num_threads=1):
        """Main workflow"""
        logging.info(f"Reading calls for sample {sample_id} at {datetime.datetime.now()}...")
        vcf_in = pysam.VariantFile(vcf)
        add_phasing_header(vcf_in.header)
        records = list(vcf_in)
        window_records = assign_records_to_windows(records, windows)
        window_calls = [
            [record_to_call(records[i]) for i in record_indexes]
            for record_indexes in window_records
        ]
        nrecord_in_windows = sum(len(a) for a in window_records)
        logging.info(
            f"Phasing {nrecord_in_windows} of {len(records)} calls in {len(windows)} windows at {datetime.datetime.now()}..."
        )

        process_window_partial = partial(
            self.process_window_catch_error, config=self.config
        )
        if num_threads == 1:
            results = [
                process_window_partial(a) for a in zip(windows, window_calls)
            ]
        else:
            pool = mp.Pool(num_threads)
            results = pool.map(process_window_partial, list(zip(windows, window_calls)))
            pool.close()
            pool.join()

        # identifiers are stamped here so they stay unique across windows
        annotator = PhaseAnnotator(self.config["first_phase_set_id"])
        summary = []
        for window, record_indexes, calls, result in zip(
            windows, window_records, window_calls, results
        ):
            if result is None:
                continue
            try:
                phased_calls = annotator.annotate(calls, result.phase_sets)
            except PhaseSetSizeError:
                logging.error(
                    f"Inconsistent phase sets in {Region(window.contig, window.start, window.end)}...See error message below"
                )
                traceback.print_exc()
                continue
            for i, call in zip(record_indexes, phased_calls):
                update_record(records[i], call)
            summary.append(self.summarize_window(window, result, phased_calls))

        logging.info(f"Writing to vcf for sample {sample_id} at {datetime.datetime.now()}...")
        out_vcf = os.path.join(outdir, sample_id + ".localphase.vcf")
        vcf_out = pysam.VariantFile(out_vcf, "w", header=vcf_in.header)
        for record in records:
            vcf_out.write(record)
        vcf_out.close()
        vcf_in.close()

        logging.info(f"Writing to json for sample {sample_id} at {datetime.datetime.now()}...")
        out_json = os.path.join(outdir, sample_id + ".localphase.json")
        with open(out_json, "w") as json_output:
            json.dump(summary, json_output, indent=4)

        if args.bam is not None:
            logging.info(f"Tagging reads for sample {sample_id} at {datetime.datetime.now()}...")
            bam_tagger = RegionBamTagger(
                args.bam,
                outdir,
                sample_id,
                padding=self.config["alignment_padding"],
                reference_fasta=args.reference,
            )
            bam_tagger.write_bam(windows)
        return summary

    @staticmethod
    def get_sample_id(vcf, prefix=None):
        """Get sample ID from the prefix, the VCF header or the file name"""
        if prefix is not None:
            return prefix
        vcf_in = pysam.VariantFile(vcf)
        samples = list(vcf_in.header.samples)
        vcf_in.close()
        if len(samples) == 1:
            return "_".join(samples[0].split())
        return os.path.basename(vcf).split(".")[0]

    def load_parameters(self):
        parser = argparse.ArgumentParser(
            description="localphase: haplotype-based local phasing of variant calls",
            formatter_class=RawTextHelpFormatter,
        )
        inputp = parser.add_argument_group("Input Options")
        outputp = parser.add_argument_group("Output Options")
        inputp.add_argument(
            "-i",
            "--vcf",
            help="Input VCF of calls, sorted by position",
            required=True,
        )
        inputp.add_argument(
            "-w",
            "--windows",
            help="Json file listing phasing windows and the haplotypes assembled in each window",
            required=True,
        )
        inputp.add_argument(
            "-b",
            "--bam",
            help="Optional BAM/CRAM. If given, reads in each window are written to a bam\n"
            + "tagged with the alignment (AR) and callable (CR) regions.",
            required=False,
        )
        inputp.add_argument(
            "-r",
            "--reference",
            help="Optional path to reference genome fasta file, required for CRAM input",
            required=False,
        )
        outputp.add_argument(
            "-o",
            "--out",
            help="Output directory",
            required=True,
        )
        parser.add_argument(
            "-p",
            "--prefix",
            help="Prefix of output files.\n"
            + "If not provided, prefix will be extracted from the header of the input VCF.\n",
            required=False,
        )
        parser.add_argument(
            "-c",
            "--config",
            help="Optional path to a user-defined config file overriding default parameters.\n"
            + "By default localphase uses the config file in localphase/data/config.yaml",
            required=False,
        )
        parser.add_argument(
            "-t",
            "--threads",
            help="Optional number of threads",
            required=False,
            type=int,
            default=1,
        )
        parser.add_argument(
            "-v", "--version", action="version", version=f"{localphase.__version__}"
        )
        return parser

    def run(self, argv=None):
        parser = self.load_parameters()
        args = parser.parse_args(argv)
        outdir = args.out
        os.makedirs(outdir, exist_ok=True)
        try:
            self.parse_configs(args.config)
            if os.path.exists(args.vcf) is False:
                raise Exception(f"File {args.vcf} not found.")
            if args.bam is not None and os.path.exists(args.bam) is False:
                raise Exception(f"File {args.bam} not found.")
            windows = load_windows(args.windows)
            if windows == []:
                logging.warning(f"No phasing windows found in {args.windows}...")
            sample_id = self.get_sample_id(args.vcf, args.prefix)
            logging.info(
                f"Processing sample {sample_id} at {datetime.datetime.now()}..."
            )
            self.process_sample(
                args.vcf, windows, outdir, sample_id, args, num_threads=args.threads
            )
        except Exception:
            logging.error("Error running the program...See error message below")
            traceback.print_exc()
            return 1
        finally:
            logging.info(
                f"Completed localphase analysis at {datetime.datetime.now()}..."
            )
        return 0
