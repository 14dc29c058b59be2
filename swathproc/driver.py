#!/usr/bin/env python3
"""
Swath Reprocessing Driver

Streams each input swath file through the ping transform pipeline and
writes the corrected file plus its summary index.

Each input is handled independently with its own configuration,
auxiliary tables and pipeline; a configuration error on one input is
reported and the batch moves on to the next.
"""

import os
import sys
import logging
import argparse
import getpass
import socket
from datetime import datetime, timezone
from typing import List, Optional

from . import __version__
from .config import (ConfigurationError, ProcessConfig, RecalcMode, load_config,
                     parameter_path)
from .pipeline import AuxiliaryData, PingTransformPipeline
from .record_stream import RecordReader, RecordWriter
from .records import Comment, Ping, RecordKind
from .summary import write_summary


PROGRAM_NAME = 'swathproc'


class SwathProcessor:
    """
    Batch reprocessing of swath files.

    Args:
        force: Reprocess even when the output is up to date
        parameter_file: Use this parameter file for every input instead of
            ``<input>.par``
        strip_comments: Drop comment records from the input
    """

    # outcomes of process_file
    PROCESSED = 'processed'
    SKIPPED = 'skipped'
    FAILED = 'failed'

    def __init__(self, force: bool = False, parameter_file: Optional[str] = None,
                 strip_comments: bool = False):
        self.force = force
        self.parameter_file = parameter_file
        self.strip_comments = strip_comments

        self.logger = logging.getLogger('SwathProcessor')

    def parameter_file_for(self, input_path: str) -> str:
        return self.parameter_file or parameter_path(input_path)

    def is_up_to_date(self, input_path: str, config: ProcessConfig,
                      par_path: Optional[str] = None) -> bool:
        """
        Check whether the output is newer than everything it depends on.

        The output is current when it exists with a non-zero modification
        time no older than the input, the parameter file and every
        auxiliary file of an enabled mode.
        """
        output = config.output_path
        if not output or not os.path.isfile(output):
            return False
        output_mtime = os.path.getmtime(output)
        if output_mtime <= 0:
            return False

        sources = [input_path]
        if par_path and os.path.isfile(par_path):
            sources.append(par_path)
        sources.extend(path for path in config.auxiliary_files().values() if path)

        for source in sources:
            if os.path.isfile(source) and os.path.getmtime(source) > output_mtime:
                self.logger.debug(f"{source} is newer than {output}")
                return False
        return True

    def history_comments(self, input_path: str, config: ProcessConfig) -> List[str]:
        """Processing history written at the head of each output."""
        try:
            user = getpass.getuser()
        except (KeyError, OSError):
            user = 'unknown'
        now = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        lines = [
            f"Reprocessed by {PROGRAM_NAME} version {__version__}",
            f"Run by <{user}> on <{socket.gethostname()}> at <{now}>",
            f"Input file:  {input_path}",
            f"Output file: {config.output_path}",
            f"Bathymetry recalculation: {config.recalc_mode.name.lower()}",
        ]
        for role, path in config.auxiliary_files().items():
            lines.append(f"  {role} file: {path}")
        for cut in config.cuts:
            lines.append(f"  data cut: {cut.kind.name.lower()} by {cut.mode.name.lower()} "
                         f"{cut.minimum:g} to {cut.maximum:g}")
        return lines

    def log_settings(self, input_path: str, config: ProcessConfig):
        self.logger.info(f"Processing {input_path}")
        self.logger.info(f"  output:        {config.output_path}")
        self.logger.info(f"  recalculation: {config.recalc_mode.name.lower()}")
        if config.recalc_mode == RecalcMode.RAYTRACE:
            self.logger.info(f"  angle mode:    {config.angle_mode.name.lower()}")
            self.logger.info(f"  corrected:     {config.corrected}")
        for role, path in config.auxiliary_files().items():
            self.logger.info(f"  {role + ':':<15}{path}")

    def process_file(self, input_path: str) -> str:
        """
        Reprocess one input file.

        Returns:
            PROCESSED, SKIPPED or FAILED

        Raises:
            KeyboardInterrupt: after removing the partial output
        """
        if not os.path.isfile(input_path):
            self.logger.error(f"Unable to open input file {input_path}")
            return self.FAILED

        par_path = self.parameter_file_for(input_path)
        try:
            config = load_config(par_path, input_path=input_path)
            if not self.force and config.check_uptodate \
                    and self.is_up_to_date(input_path, config, par_path):
                self.logger.info(f"{config.output_path} is up to date, skipping {input_path}")
                return self.SKIPPED
            self.log_settings(input_path, config)
            aux = AuxiliaryData.load(config)
            pipeline = PingTransformPipeline(config, aux)
        except ConfigurationError as e:
            self.logger.error(f"{input_path}: {e}")
            return self.FAILED

        try:
            counts = self.stream(input_path, config, pipeline)
        except (ValueError, OSError) as e:
            self.logger.error(f"{input_path}: {e}, output discarded")
            self.discard(config.output_path)
            return self.FAILED
        except KeyboardInterrupt:
            self.logger.warning(f"Interrupted, removing partial output {config.output_path}")
            self.discard(config.output_path)
            raise

        pipeline.log_statistics()
        self.logger.info(f"Wrote {counts['written']} records to {config.output_path} "
                         f"({counts['comments_stripped']} comments stripped, "
                         f"{counts['skipped']} unreadable records skipped)")
        try:
            write_summary(config.output_path)
        except OSError as e:
            self.logger.error(f"{input_path}: unable to write summary index: {e}")
            return self.FAILED
        return self.PROCESSED

    def stream(self, input_path: str, config: ProcessConfig,
               pipeline: PingTransformPipeline) -> dict:
        """Copy records from input to output, transforming pings on the way."""
        strip = self.strip_comments or config.strip_comments
        counts = {'written': 0, 'comments_stripped': 0, 'skipped': 0}

        with RecordReader(input_path) as reader, RecordWriter(config.output_path) as writer:
            for line in self.history_comments(input_path, config):
                writer.write_record(RecordKind.COMMENT, Comment(line))

            for kind, obj in reader:
                if kind in (RecordKind.PING, RecordKind.NAV) and isinstance(obj, Ping):
                    pipeline.process(kind, obj)
                elif kind == RecordKind.COMMENT and strip:
                    counts['comments_stripped'] += 1
                    continue
                writer.write_record(kind, obj)

            counts['written'] = writer.records_written
            counts['skipped'] = reader.records_skipped
        return counts

    def discard(self, path: Optional[str]):
        if path and os.path.exists(path):
            os.remove(path)

    def run(self, inputs: List[str]) -> int:
        """
        Process a batch of inputs.

        Returns:
            Exit status: 0 if no input failed, 1 otherwise
        """
        outcomes = {self.PROCESSED: 0, self.SKIPPED: 0, self.FAILED: 0}
        for input_path in inputs:
            outcomes[self.process_file(input_path)] += 1

        self.logger.info(f"Done: {outcomes[self.PROCESSED]} processed, "
                         f"{outcomes[self.SKIPPED]} up to date, {outcomes[self.FAILED]} failed")
        return 1 if outcomes[self.FAILED] else 0


def read_datalist(path: str) -> List[str]:
    """
    Read a list of input files, one per line.

    Only the first field of each line is used; '#' starts a comment and
    relative paths are taken relative to the list itself.
    """
    base_dir = os.path.dirname(os.path.abspath(path))
    inputs = []
    with open(path, 'r') as f:
        for line in f:
            line = line.split('#', 1)[0].strip()
            if not line:
                continue
            entry = line.split()[0]
            if not os.path.isabs(entry):
                entry = os.path.join(base_dir, entry)
            inputs.append(entry)
    return inputs


def main(args=None):
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME,
        description='Reprocess swath sonar bathymetry with navigation, attitude, '
                    'sound velocity, tide and edit corrections',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Reprocess one file using line001.sw.par next to it
  %(prog)s line001.sw

  # Reprocess everything in a datalist, ignoring up-to-date outputs
  %(prog)s --list survey.datalist --force

  # Share one YAML configuration between several files
  %(prog)s --param survey.yaml line001.sw line002.sw
        '''
    )

    parser.add_argument('inputs', nargs='*', help='Swath files to reprocess')
    parser.add_argument('--list', dest='datalist',
                        help='File listing swath files to reprocess, one per line')
    parser.add_argument('--param',
                        help='Parameter file (.par or .yaml) used for every input '
                             '(default: <input>.par)')
    parser.add_argument('--force', action='store_true',
                        help='Reprocess even if the output is up to date')
    parser.add_argument('--strip-comments', action='store_true',
                        help='Drop comment records from the input')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Log debug messages')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Only log warnings and errors')
    parser.add_argument('--version', action='version',
                        version=f'%(prog)s {__version__}')

    args = parser.parse_args(args)

    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format='%(levelname)s [%(name)s] %(message)s')

    inputs = list(args.inputs)
    if args.datalist:
        try:
            inputs.extend(read_datalist(args.datalist))
        except OSError as e:
            parser.error(f"unable to read datalist {args.datalist}: {e}")
    if not inputs:
        parser.error('no input files given')

    processor = SwathProcessor(force=args.force, parameter_file=args.param,
                               strip_comments=args.strip_comments)
    try:
        return processor.run(inputs)
    except KeyboardInterrupt:
        logging.getLogger('SwathProcessor').warning('Interrupted by user')
        return 130


if __name__ == '__main__':
    sys.exit(main())
