#!/usr/bin/env python3
import argparse
import asyncio
import logging
import os
from functools import partial
from typing import Callable, List, Optional

from dotenv import load_dotenv
from prometheus_client import CollectorRegistry, Gauge, pushadd_to_gateway

from cifs import CONST_STATS_FILE, CifsStatsError, ClientStats, Dialect
from parse_cifs import parse_client_stats

CONST_JOB = 'cifsMonitor'
CONST_POLL_INTERVAL = 10
CONST_LOG_FILE = 'cifs_stats.log'


def read_stats(path: str = CONST_STATS_FILE) -> ClientStats:
    with open(path, 'r', encoding='utf-8') as f:
        return parse_client_stats(f)


def build_registry(stats: ClientStats) -> CollectorRegistry:
    reg = CollectorRegistry()
    header_metric = Gauge('cifs_header', 'CIFS client resources in use',
                          ['field'], registry=reg)
    smb1_metric = Gauge('cifs_smb1_stats', 'CIFS SMB1 per-share counters',
                        ['session', 'server', 'share', 'counter'],
                        registry=reg)
    smb2_metric = Gauge('cifs_smb2_stats', 'CIFS SMB2 per-share counters',
                        ['session', 'server', 'share', 'operation', 'counter'],
                        registry=reg)

    for name, value in stats.header.items():
        header_metric.labels(field=name).set(value)

    for share in stats.shares:
        labels = {
            'session': str(share.session.session_id),
            'server': share.session.server,
            'share': share.session.share,
        }
        if share.dialect == Dialect.SMB1:
            for name, value in share.stats.items():
                smb1_metric.labels(counter=name, **labels).set(value)
        else:
            for operation, counters in share.stats.items():
                for name, value in counters.items():
                    smb2_metric.labels(operation=operation, counter=name,
                                       **labels).set(value)
    return reg


def flush_to_gateway(stats: ClientStats, target: str, job: str = CONST_JOB):
    reg = build_registry(stats)
    try:
        pushadd_to_gateway(target, job=job, registry=reg)
    except OSError as e:
        logging.error(f'fail to upload to {target}: {e}')


async def poll_stats(path: str, callback: Callable[[ClientStats], None],
                     sec_await: float) -> Optional[ClientStats]:
    ## file read and gateway push block, keep them off the event loop
    loop = asyncio.get_running_loop()
    stats = None
    try:
        stats = await loop.run_in_executor(None, read_stats, path)
    except (OSError, CifsStatsError) as e:
        ## skip this cycle, the next poll reads a fresh snapshot
        logging.error(f'[{path!r} not parsed: {e}]')
    else:
        logging.debug(f'{path}: {len(stats.header)} header fields, '
                      f'{len(stats.shares)} shares')
        await loop.run_in_executor(None, callback, stats)
    await asyncio.sleep(sec_await)
    return stats


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Push /proc/fs/cifs/Stats to a Prometheus pushgateway')
    parser.add_argument('--file', default=os.getenv('CIFS_STATS_FILE', CONST_STATS_FILE),
                        help='stats file to read')
    parser.add_argument('--gateway', default=os.getenv('PROME_ADDR'),
                        help='pushgateway address')
    parser.add_argument('--job', default=os.getenv('CIFS_JOB', CONST_JOB))
    parser.add_argument('--interval', type=float,
                        default=os.getenv('CIFS_POLL_INTERVAL', str(CONST_POLL_INTERVAL)),
                        help='seconds between two reads')
    parser.add_argument('--log-file', default=os.getenv('CIFS_LOG_FILE', CONST_LOG_FILE))
    parser.add_argument('--once', action='store_true', help='read a single snapshot and exit')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    logging.basicConfig(
            filename=args.log_file,
            level=logging.DEBUG,
            format='%(levelname)s:%(asctime)s:%(message)s'
    )
    if not args.gateway:
        logging.error('no pushgateway address, set PROME_ADDR or --gateway')
        return 1

    logging.info('cifs stats processing begin...')
    callback = partial(flush_to_gateway, target=args.gateway, job=args.job)
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        if args.once:
            stats = loop.run_until_complete(poll_stats(args.file, callback, 0))
            return 0 if stats is not None else 1
        while True:
            loop.run_until_complete(poll_stats(args.file, callback, args.interval))
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
        logging.info('cifs stats processing end.')


if __name__ == '__main__':
    raise SystemExit(main())
