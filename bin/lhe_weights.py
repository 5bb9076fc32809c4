import argparse
import json
import logging
import sys
from pathlib import Path

from lheweights.cli_utils import build_config, output_path_for, validate_arguments
from lheweights.errors import ConfigurationError, LHEFormatError
from lheweights.lhe_reader import iter_lhe_chunks, read_lhe_headers
from lheweights.producer import GenWeightsProducer
from lheweights.weight_config import DEFAULT_CHUNKSIZE
from lheweights.weight_tables import WeightFileWriter, read_runs_summary, save_run_summary

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


def process_lhe_file(producer, path, *, outdir, chunksize, summary_dir=None):
    """Run the producer over one LHE file (one run), streaming events to ROOT."""
    headers = [(section.tag, section.lines) for section in read_lhe_headers(path)]
    if not headers:
        logging.info("No header in %s; LHE weight columns will be empty", path)

    with WeightFileWriter(output_path_for(path, outdir)) as writer:
        summary = producer.stream(headers, iter_lhe_chunks(path, chunksize), writer.write_events)
        writer.write_runs(summary)

    if summary_dir is not None:
        save_run_summary(summary, Path(summary_dir) / writer.path.stem)
    return writer.path, summary


def merge_outputs(paths):
    """Merge the Runs trees of existing output files and print the result."""
    summary = read_runs_summary(paths)
    print(json.dumps(summary.to_dict(), indent=2))
    return summary


def build_parser():
    parser = argparse.ArgumentParser(description="Extract LHE scale/PDF/named weight tables and run sums of weights.")
    parser.add_argument("inputs", nargs="+", type=str, help="LHE files (one run each), or ROOT outputs with --merge.")
    optional = parser.add_argument_group("Optional arguments")
    optional.add_argument("--outdir", type=Path, default=Path("weights"), help="Directory for output ROOT files (default: weights/).")
    optional.add_argument("--summary-json", type=Path, default=None, help="Also write run_summary.json per input into this directory.")
    optional.add_argument("--config", type=Path, default=None, help="JSON file with preferredPDFs / namedWeightIDs / namedWeightLabels / debug.")
    optional.add_argument("--preferred-pdfs", nargs="+", type=int, default=None, help="LHA IDs of preferred PDF error sets, most preferred first.")
    optional.add_argument("--named-weight-ids", nargs="*", default=None, help="Weight ids to export as named weights.")
    optional.add_argument("--named-weight-labels", nargs="*", default=None, help="Labels of the named weights (same length as --named-weight-ids).")
    optional.add_argument("--workers", type=int, default=1, help="Number of worker threads (default: 1).")
    optional.add_argument("--chunksize", type=int, default=DEFAULT_CHUNKSIZE, help=f"Events per processing chunk (default: {DEFAULT_CHUNKSIZE}).")
    optional.add_argument("--merge", action="store_true", help="Merge the Runs trees of existing output files and print the summary.")
    optional.add_argument("--debug", action="store_true", help="Log a one-time trace of header parsing and event weights.")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.merge:
        try:
            merge_outputs(args.inputs)
        except RuntimeError as e:
            parser.error(str(e))
        return 0

    try:
        validate_arguments(args)
        config = build_config(args)
    except (ConfigurationError, ValueError, FileNotFoundError, RuntimeError) as e:
        parser.error(str(e))

    producer = GenWeightsProducer(config, n_workers=args.workers)
    for path in args.inputs:
        logging.info("Processing %s", path)
        try:
            out_path, summary = process_lhe_file(
                producer, path,
                outdir=args.outdir, chunksize=args.chunksize, summary_dir=args.summary_json,
            )
        except LHEFormatError as e:
            logging.error("Failed to process %s: %s", path, e)
            return 1
        logging.info(
            "%s: %d events, sumw = %.6g -> %s",
            path, summary.event_count, summary.sumw, out_path,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
