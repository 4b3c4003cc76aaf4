import sys
import pprint
from dataclasses import asdict

from cifs import CONST_STATS_FILE
from parse_cifs import parse_client_stats


def dump(path: str) -> dict:
    with open(path, 'r', encoding='utf-8') as f:
        stats = parse_client_stats(f)
    shares = []
    for share in stats.shares:
        vs = asdict(share)
        vs['dialect'] = share.dialect.name
        shares.append(vs)
    return {'header': stats.header, 'shares': shares}


if __name__ == '__main__':
    input = sys.argv[1] if len(sys.argv) > 1 else CONST_STATS_FILE
    pprint.pprint(dump(input))
