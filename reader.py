"""
File decoder for MCTAL tally files.

Decoding runs in two passes. The first pass reads the header and locates
the line range of every block from its column-1 keyword. The second pass
decodes the standard tally blocks in parallel on a thread pool, then the
KCODE and TMESH blocks on the calling thread.
"""

import os
import re
import multiprocessing
from enum import Enum
from collections import namedtuple
from multiprocessing.pool import ThreadPool

from tqdm import tqdm

from config import CodecConfig, PROFILES, DEFAULT_VERSION, get_profile
from errors import MctalError, MalformedRecord, TallyIdentifierMismatch, TrailingData
from logger import (log_info, log_debug, log_warning, log_error, log_exception,
                    log_codec_settings, log_document_summary)
from scanner import RecordScanner, keyword_of, number_lines, parse_fields, int_field
from blocks import decode_tally, decode_kcode, decode_tmesh
from tally import Header, TallyFile


class BlockKind(Enum):
    TALLY = "tally"
    TMESH = "tmesh"
    KCODE = "kcode"


Block = namedtuple('Block', ['kind', 'id', 'lines'])

# ntal count with the optional npert count
_COUNTS = re.compile(r'^ntal\s*(\d+)(?:\s+npert\s*(\d+))?\s*$', re.IGNORECASE)

_TOKEN = re.compile(r'\S+')


def sniff_version(first_line):
    """
    Guess the format version from the columns of the first header line.

    The producers differ in the width of the history-count field, so the
    column where that field ends identifies the version.

    Parameters:
        first_line: Text of the first line of the file

    Returns:
        FormatVersion: Detected version, or the default if nothing matches
    """
    start = PROFILES[DEFAULT_VERSION].header_numeric_start
    tokens = [m for m in _TOKEN.finditer(first_line) if m.start() >= start]
    if len(tokens) >= 2:
        nps_end = tokens[1].end()
        for version, profile in PROFILES.items():
            if nps_end == profile.header_numeric_start + profile.dump_width + profile.nps_width:
                log_debug(f"Detected {version.value} MCTAL format")
                return version

    log_warning(f"Could not detect MCTAL format version, assuming {DEFAULT_VERSION.value}")
    return DEFAULT_VERSION


def decode_header(scanner):
    """
    Decode the run header, the message, the tally counts and the declared ids.

    Parameters:
        scanner: RecordScanner positioned at the first line of the file

    Returns:
        Header: The decoded header
    """
    profile = scanner.profile
    record = scanner.next("header")
    if keyword_of(record.text) is not None:
        raise MalformedRecord(record.line, "header", f"found {record.text.strip()!r}")

    text = record.text
    start = profile.header_numeric_start
    widths = (profile.dump_width, profile.nps_width, profile.rnr_width)
    numbers = parse_fields(text[start:], widths, tuple(int_field(width) for width in widths))
    if numbers is None or len(numbers) != 3:
        raise MalformedRecord(record.line, "header", "expected dump, history and random number counts")

    header = Header(
        code=text[:profile.code_width].strip(),
        code_version=text[profile.code_width:profile.code_width + profile.code_version_width].strip(),
        problem_id=text[profile.code_width + profile.code_version_width:start].strip(),
        dump=numbers[0],
        n_histories=numbers[1],
        n_random=numbers[2],
    )

    # Message line, which some producers leave out entirely
    record = scanner.peek()
    if record is None:
        raise MalformedRecord(scanner.last_line, "message", "unexpected end of input")
    if keyword_of(record.text) != 'ntal':
        scanner.next("message")
        message = record.text[1:] if record.text.startswith(' ') else record.text
        header.message = message.rstrip()

    record = scanner.expect_keyword('ntal')
    match = _COUNTS.match(record.text.strip())
    if match is None:
        raise MalformedRecord(record.line, "ntal", f"found {record.text.strip()!r}")
    header.n_tallies = int(match.group(1))
    if match.group(2) is not None:
        header.n_perturbations = int(match.group(2))

    if header.n_tallies > 0:
        header.tally_ids = scanner.read_list(header.n_tallies, "tally id", (profile.tally_id_width,),
                                             (int_field(profile.tally_id_width),))

    log_debug(f"Code        = {header.code} {header.code_version}")
    log_debug(f"Histories   = {header.n_histories}")
    log_debug(f"Tally ids   = {header.tally_ids}")
    return header


def _block_of(line, profile):
    """Block opened by a line, or None if the line continues the current block."""
    keyword = keyword_of(line.text)
    if keyword == 'kcode':
        return Block(BlockKind.KCODE, None, [line])
    if keyword != 'tally':
        return None

    width = profile.tally_field_width
    fields = parse_fields(line.text[5:], (width,), (int_field(width),))
    if fields is None or len(fields) < 3:
        raise MalformedRecord(line.number, "tally header",
                              f"expected integer fields of at most {width} columns, found {line.text.strip()!r}")
    kind = BlockKind.TMESH if fields[2] < 0 else BlockKind.TALLY
    return Block(kind, fields[0], [line])


def scan_blocks(lines, profile):
    """
    Locate block boundaries without decoding the blocks.

    Parameters:
        lines: Numbered Line tuples following the header
        profile: FormatProfile in use

    Returns:
        tuple: (lines ahead of the first block, list of Block)
    """
    leading = []
    blocks = []
    for line in lines:
        block = _block_of(line, profile)
        if block is not None:
            blocks.append(block)
        elif blocks:
            blocks[-1].lines.append(line)
        else:
            leading.append(line)

    log_debug(f"Located {len(blocks)} blocks")
    return leading, blocks


def _decode_block(block, profile, final):
    """
    Decode one located block with its own scanner.

    Returns:
        tuple: (decoded block, unconsumed non-blank lines of the final block)
    """
    scanner = RecordScanner(block.lines, profile)
    if block.kind is BlockKind.TALLY:
        item = decode_tally(scanner, block.id)
    elif block.kind is BlockKind.TMESH:
        item = decode_tmesh(scanner)
    else:
        item = decode_kcode(scanner)

    leftovers = scanner.remaining()
    if leftovers and not final:
        raise MalformedRecord(leftovers[0].number, f"{block.kind.value} block",
                              f"unexpected {leftovers[0].text.strip()!r}")
    return item, leftovers


def _decode_task(task):
    """Worker entry point: the decoded block, or the error it raised."""
    try:
        return _decode_block(*task)
    except MctalError as e:
        return e


def decode_tally_blocks(blocks, profile, config, final=None):
    """
    Decode standard tally blocks, in parallel when configured.

    Results keep the order of `blocks` whatever order the workers finish
    in. Every block is attempted; the first failure in block order is
    raised with the number of blocks that succeeded and failed.

    Parameters:
        blocks: Tally Blocks in declared order
        profile: FormatProfile in use
        config: CodecConfig controlling workers and progress display
        final: The last block of the file, if it is among `blocks`

    Returns:
        list: (Tally, leftover lines) per block
    """
    tasks = [(block, profile, block is final) for block in blocks]
    n_workers = config.workers or max(1, multiprocessing.cpu_count() - 1)

    if config.parallel and n_workers > 1 and len(tasks) > 1:
        log_debug(f"Decoding {len(tasks)} tallies with {min(n_workers, len(tasks))} threads")
        with ThreadPool(processes=min(n_workers, len(tasks))) as pool:
            outcomes = pool.imap(_decode_task, tasks)
            if config.show_progress:
                outcomes = tqdm(outcomes, total=len(tasks), desc="Decoding tallies")
            outcomes = list(outcomes)
    else:
        iterator = tqdm(tasks, desc="Decoding tallies") if config.show_progress else tasks
        outcomes = [_decode_task(task) for task in iterator]

    failures = [outcome for outcome in outcomes if isinstance(outcome, MctalError)]
    if failures:
        error = failures[0]
        error.blocks_failed = len(failures)
        error.blocks_succeeded = len(outcomes) - len(failures)
        log_error(f"Failed to decode {len(failures)} of {len(outcomes)} tallies: {error}")
        raise error

    return outcomes


def decode_mctal(lines, version=None, config=None):
    """
    Decode MCTAL text into a TallyFile.

    Parameters:
        lines: Iterable of text lines (a file object or a list of strings)
        version: Format version to use; overrides the configuration
        config: CodecConfig, defaults used if None

    Returns:
        TallyFile: The decoded document
    """
    if config is None:
        config = CodecConfig()
    log_codec_settings(config)

    lines = number_lines(lines)
    if not lines:
        raise MalformedRecord(1, "header", "empty input")

    if version is None:
        version = config.format_version
    if version is None:
        version = sniff_version(lines[0].text)
    profile = get_profile(version)

    scanner = RecordScanner(lines, profile)
    header = decode_header(scanner)
    leading, blocks = scan_blocks(lines[scanner.position:], profile)

    leading = [line for line in leading if line.text.strip()]
    if leading and blocks:
        raise MalformedRecord(leading[0].number, "block", f"unexpected {leading[0].text.strip()!r}")

    tally_blocks = [block for block in blocks if block.kind is BlockKind.TALLY]
    located = [block.id for block in tally_blocks]
    if located != header.tally_ids:
        error = TallyIdentifierMismatch(header.tally_ids, located)
        log_error(str(error))
        raise error

    kcode_blocks = [block for block in blocks if block.kind is BlockKind.KCODE]
    if len(kcode_blocks) > 1:
        raise MalformedRecord(kcode_blocks[1].lines[0].number, "kcode", "more than one KCODE block")

    final = blocks[-1] if blocks else None
    trailing = leading

    doc = TallyFile(version=profile.version, header=header)
    for tally, leftovers in decode_tally_blocks(tally_blocks, profile, config, final):
        doc.tallies.append(tally)
        trailing = trailing or leftovers

    for block in blocks:
        if block.kind is BlockKind.TALLY:
            continue
        try:
            item, leftovers = _decode_block(block, profile, block is final)
        except MctalError as e:
            log_exception(e, f"Failed to decode {block.kind.value} block")
            raise
        if block.kind is BlockKind.KCODE:
            doc.kcode = item
        else:
            doc.tmesh.append(item)
        trailing = trailing or leftovers

    if trailing:
        warning = TrailingData(trailing[0].number, "\n".join(line.text for line in trailing))
        if config.strict_trailing:
            log_error(str(warning))
            raise warning
        log_warning(str(warning))
        doc.warnings.append(warning)

    log_document_summary(doc)
    return doc


def read_mctal(path, version=None, config=None):
    """
    Read and decode an MCTAL file.

    Parameters:
        path: Path to the MCTAL file
        version: Format version to use; sniffed from the header if None
        config: CodecConfig, defaults used if None

    Returns:
        TallyFile: The decoded document
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"MCTAL file not found: {path}")

    log_info(f"Reading MCTAL file {path}")
    with open(path, 'r') as f:
        return decode_mctal(f, version, config)
