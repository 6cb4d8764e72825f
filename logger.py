"""
Logging helpers shared by the MCTAL reader, writer and validation.

Messages go through the root logger, so applications embedding the codec
can route them with their own handlers instead of calling setup_logging.
"""

import logging
import os
import datetime
import sys


def setup_logging(log_file=None, console_level=logging.INFO, file_level=logging.DEBUG):
    """
    Send codec messages to stdout and, optionally, to a log file.

    The file receives per-block decode detail at DEBUG; the console
    usually only needs the document summary.

    Parameters:
        log_file: Path to the log file, or None for console output only
        console_level: Logging level for console output (int or level name)
        file_level: Logging level for file output
    """
    if isinstance(console_level, str):
        console_level = logging.getLevelName(console_level.upper())

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # replace handlers from an earlier setup
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    logger.addHandler(console_handler)

    logging.debug(f'MCTAL codec logging started at {datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")}')


def setup_logging_from_config(config):
    """Configure logging from a CodecConfig."""
    setup_logging(config.log_file, config.log_level)


def log_info(message):
    """Progress worth showing by default: files read and written, document summaries."""
    logging.info(message)


def log_debug(message):
    """Per-record decode detail such as tally ids, bin counts and result lengths."""
    logging.debug(message)


def log_warning(message):
    """Recoverable oddities in the input: trailing data, missing bin lists, unknown versions."""
    logging.warning(message)


def log_error(message):
    logging.error(message)


def log_exception(exception, message="MCTAL decoding failed"):
    """
    Log a codec error with its traceback.

    Parameters:
        exception: The MctalError (or other exception) being handled
        message: Context naming the block or file being processed
    """
    logging.exception(f"{message}: {exception}")


def log_codec_settings(config):
    """
    Log the codec settings in use.

    Parameters:
        config: CodecConfig driving the read or write
    """
    logging.debug("Codec settings:")
    for key, value in config.to_dict().items():
        logging.debug(f"  {key}: {value}")


def log_document_summary(doc):
    """
    Log a summary of a decoded MCTAL document, one line per block.

    Parameters:
        doc: TallyFile to summarise
    """
    header = doc.header
    logging.info(f"MCTAL ({doc.version.value}) from {header.code} {header.code_version}, "
                 f"{header.n_histories} histories, {len(doc.tallies)} tallies")
    for tally in doc.tallies:
        logging.info(f"  tally {tally.id}: {len(tally.results)} results, bins {tally.bins.counts()}")
    if doc.kcode is not None:
        logging.info(f"  kcode: {len(doc.kcode.cycles)} cycles, {doc.kcode.settle_cycles} settle")
    for tmesh in doc.tmesh:
        logging.info(f"  tmesh {tmesh.id}: {tmesh.geometry.long_name}, {tmesh.n_voxels} voxels")
