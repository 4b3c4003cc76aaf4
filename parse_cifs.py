import logging
import re
from typing import Dict, IO, Iterator, List, Optional

from cifs import (ClientStats, Dialect, InvalidFormatError, SMB1Stats,
                  SMB2Stats, SessionIDs, ShareStats, StreamReadError)

CONST_UINT64_MAX = 2 ** 64 - 1

##################################################################
### header block, one line each, last one is "Total vfs operations"
###
### Resources in use
### CIFS Session: 1
### Share (unique mount targets): 2
### SMB Request/Response Buffer: 1 Pool size: 5
### SMB Small Req/Resp Buffer: 1 Pool size: 30
### Operations (MIDs): 0
###
### 0 session 0 share reconnects
### Total vfs operations: 16 maximum at one time: 2
##################################################################
CONST_HEADER_REGEX = [
    re.compile(r'CIFS Session:\s+(?P<sessions>\d+)'),
    re.compile(r'Share \(unique mount targets\):\s+(?P<shares>\d+)'),
    re.compile(r'SMB Request/Response Buffer:\s+(?P<smbBuffer>\d+)'
               r'\s+Pool size:\s+(?P<smbPoolSize>\d+)'),
    re.compile(r'SMB Small Req/Resp Buffer:\s+(?P<smbSmallBuffer>\d+)'
               r'\s+Pool size:\s+(?P<smbSmallPoolSize>\d+)'),
    re.compile(r'Operations \(MIDs\):\s+(?P<operations>\d+)'),
    re.compile(r'(?P<sessionCount>\d+) session (?P<shareReconnects>\d+)'
               r' share reconnects'),
    re.compile(r'Total vfs operations:\s+(?P<totalOperations>\d+)'
               r'\s+maximum at one time:\s+(?P<totalMaxOperations>\d+)'),
]
CONST_HEADER_END = 'Total vfs'

### 1) \\server\share
###    ^^  ^^^^^^^^^^^^
CONST_BANNER_REGEX = re.compile(
    r'^\s*(?P<sessionID>\d+)\) \\\\(?P<server>[^\\\s]+)(?P<share>\\.*?)\s*$')

CONST_SMB1_SMBS_REGEX = re.compile(
    r'^\s*SMBs:\s+(?P<smbs>\d+)\s+Oplocks breaks:\s+(?P<breaks>\d+)')
CONST_SMB2_SMBS_REGEX = re.compile(r'^\s*SMBs:\s+(?P<smbs>\d+)\s*$')
CONST_SMB2_TOTAL = 'smbs'

CONST_SMB1_REGEX = [
    re.compile(r'Reads:\s+(?P<reads>\d+)\s+Bytes:\s+(?P<readsBytes>\d+)'),
    re.compile(r'Writes:\s+(?P<writes>\d+)\s+Bytes:\s+(?P<writesBytes>\d+)'),
    re.compile(r'Flushes:\s+(?P<flushes>\d+)'),
    re.compile(r'Locks:\s+(?P<locks>\d+)\s+HardLinks:\s+(?P<hardlinks>\d+)'
               r'\s+Symlinks:\s+(?P<symlinks>\d+)'),
    re.compile(r'Opens:\s+(?P<opens>\d+)\s+Closes:\s+(?P<closes>\d+)'
               r'\s+Deletes:\s+(?P<deletes>\d+)'),
    re.compile(r'Posix Opens:\s+(?P<posixOpens>\d+)'
               r'\s+Posix Mkdirs:\s+(?P<posixMkdirs>\d+)'),
    re.compile(r'Mkdirs:\s+(?P<mkdirs>\d+)\s+Rmdirs:\s+(?P<rmdirs>\d+)'),
    re.compile(r'Renames:\s+(?P<renames>\d+)\s+T2 Renames\s+(?P<t2Renames>\d+)'),
    re.compile(r'FindFirst:\s+(?P<findFirst>\d+)\s+FNext\s+(?P<fNext>\d+)'
               r'\s+FClose\s+(?P<fClose>\d+)'),
]

### Creates: 0 sent 2 failed
CONST_SMB2_REGEX = re.compile(
    r'^\s*(?P<keyword>\w+):\s+(?P<sent>\d+)\s+sent\s+(?P<failed>\d+)\s+failed')


def to_uint64(text: str) -> Optional[int]:
    try:
        value = int(text)
    except ValueError:
        return None
    if value < 0 or value > CONST_UINT64_MAX:
        return None
    return value


def _captures(match: re.Match, names: Optional[List[str]] = None) -> Dict[str, int]:
    vs = {}
    for name, text in match.groupdict().items():
        if names is not None and name not in names:
            continue
        value = to_uint64(text)
        if value is None:
            logging.debug(f'drop {name}={text!r}, not an unsigned 64-bit value')
            continue
        vs[name] = value
    return vs


def _read_lines(stream: IO[str]) -> Iterator[str]:
    try:
        it = iter(stream)
    except (OSError, ValueError) as e:
        raise StreamReadError(f'error scanning SMB file: {e}') from e
    while True:
        try:
            line = next(it)
        except StopIteration:
            return
        except (OSError, ValueError) as e:  ## UnicodeDecodeError is a ValueError
            raise StreamReadError(f'error scanning SMB file: {e}') from e
        yield line.rstrip('\r\n')


def parse_header(lines: Iterator[str], header: Dict[str, int]) -> None:
    for line in lines:
        for regex in CONST_HEADER_REGEX:
            match = regex.search(line)
            if match:
                header.update(_captures(match))
                break
        if line.startswith(CONST_HEADER_END):
            break


class ShareParser:
    """
    Walks the share sections after the header.

    The kernel prints no section marker for the dialect, so the mode is
    taken from the shape of each "SMBs:" line: with "Oplocks breaks" it is
    SMB1, alone it is SMB2. A banner opens a record of the current mode;
    the SMBs line that follows re-seeds it only when the variant differs.
    """

    def __init__(self, stats: ClientStats):
        self.stats = stats
        self.mode = Dialect.SMB1
        self.current: Optional[ShareStats] = None

    def feed(self, line: str) -> None:
        match = CONST_BANNER_REGEX.search(line)
        if match:
            self._open_share(match)
            return
        if self._switch_mode(line):
            return
        if self.current is None:
            ## counters before any banner have no share to go to
            if line.strip():
                logging.debug(f'drop {line!r}, no share banner seen yet')
            return
        if self.mode == Dialect.SMB1:
            self._parse_smb1(line)
        else:
            self._parse_smb2(line)

    def _new_share(self, session: SessionIDs) -> ShareStats:
        if self.mode == Dialect.SMB1:
            return SMB1Stats(session=session)
        return SMB2Stats(session=session)

    def _open_share(self, match: re.Match) -> None:
        session_id = to_uint64(match.group('sessionID'))
        session = SessionIDs(
            session_id=session_id if session_id is not None else 0,
            server=match.group('server'),
            share=match.group('share'))
        self.current = self._new_share(session)
        self.stats.shares.append(self.current)

    def _reseed(self) -> None:
        ## same dialect: keep the counters already collected for this share
        if self.current is None or self.current.dialect == self.mode:
            return
        self.current = self._new_share(self.current.session)
        self.stats.shares[-1] = self.current

    def _switch_mode(self, line: str) -> bool:
        match = CONST_SMB1_SMBS_REGEX.search(line)
        if match:
            self.mode = Dialect.SMB1
            self._reseed()
            if self.current is not None:
                self.current.stats.update(_captures(match))
            return True

        match = CONST_SMB2_SMBS_REGEX.search(line)
        if match:
            self.mode = Dialect.SMB2
            self._reseed()
            if self.current is not None:
                ## same two-level shape as every other keyword
                self.current.stats[CONST_SMB2_TOTAL] = _captures(match)
            return True
        return False

    def _parse_smb1(self, line: str) -> None:
        for regex in CONST_SMB1_REGEX:
            match = regex.search(line)
            if match:
                self.current.stats.update(_captures(match))
                return
        logging.debug(f'drop unknown SMB1 line {line!r}')

    def _parse_smb2(self, line: str) -> None:
        match = CONST_SMB2_REGEX.search(line)
        if match is None:
            logging.debug(f'drop unknown SMB2 line {line!r}')
            return
        self.current.stats[match.group('keyword')] = _captures(
            match, ['sent', 'failed'])


def parse_client_stats(stream: IO[str]) -> ClientStats:
    """
    Parse one full snapshot of /proc/fs/cifs/Stats.

    The stream is read to the end but not closed. Raises StreamReadError
    when reading fails and InvalidFormatError when no header line was
    recognized.
    """
    stats = ClientStats()
    lines = _read_lines(stream)
    parse_header(lines, stats.header)

    parser = ShareParser(stats)
    for line in lines:
        parser.feed(line)

    if len(stats.header) == 0:
        ## we should never have an empty header, otherwise the file is invalid
        raise InvalidFormatError('error scanning SMB file: header is empty')
    return stats


def parse_client_stats_text(text: str) -> ClientStats:
    return parse_client_stats(iter(text.splitlines()))
