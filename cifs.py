##################################################################
### models for /proc/fs/cifs/Stats
### fields: https://www.kernel.org/doc/readme/Documentation-filesystems-cifs-README
##################################################################
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Union

CONST_STATS_FILE = '/proc/fs/cifs/Stats'


class Dialect(Enum):
    SMB1 = 1   ## legacy, flat counters
    SMB2 = 2   ## per-operation sent/failed


class CifsStatsError(Exception):
    pass


class StreamReadError(CifsStatsError):
    """The line source failed while the stats were being read."""


class InvalidFormatError(CifsStatsError):
    """No header line was recognized, the input is not a CIFS stats dump."""


@dataclass(frozen=True)
class SessionIDs:
    session_id: int = 0
    server: str = ''
    share: str = ''


@dataclass
class SMB1Stats:
    session: SessionIDs = field(default_factory=SessionIDs)
    stats: Dict[str, int] = field(default_factory=dict)
    dialect = Dialect.SMB1


@dataclass
class SMB2Stats:
    session: SessionIDs = field(default_factory=SessionIDs)
    stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    dialect = Dialect.SMB2


ShareStats = Union[SMB1Stats, SMB2Stats]


@dataclass
class ClientStats:
    header: Dict[str, int] = field(default_factory=dict)
    shares: List[ShareStats] = field(default_factory=list)

    @property
    def smb1_stats(self) -> List[SMB1Stats]:
        return [s for s in self.shares if s.dialect == Dialect.SMB1]

    @property
    def smb2_stats(self) -> List[SMB2Stats]:
        return [s for s in self.shares if s.dialect == Dialect.SMB2]
