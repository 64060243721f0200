#!/usr/bin/env python3

import argparse
import os
import signal
import sys

from regsync.config import load_config
from regsync.docker_cli import DockerCLI
from regsync.errors import ClientError, ConfigError
from regsync.logs import LogFormats, new_logger
from regsync.scheduler import Scheduler
from regsync.sync import Syncer

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

parser = argparse.ArgumentParser(prog='regsync', description='Keep container image registries in sync.')
parser.add_argument('-c', '--config', type=str, default=os.environ.get('REGSYNC_CONFIG', 'regsync.yaml'),
                    help='The configuration file (defaults to $REGSYNC_CONFIG or regsync.yaml).')
parser.add_argument('--log-format', type=str, choices=[f.value for f in LogFormats], default=LogFormats.AUTO.value,
                    help='Log rendering, auto picks console on a terminal and json otherwise.')
parser.add_argument('--log-level', type=str.upper, choices=LOG_LEVELS, default='INFO', help='Minimum level to log.')


def parse_arguments(argv=None):
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_arguments(argv)
    log = new_logger(log_format=args.log_format, log_level=args.log_level)

    try:
        conf = load_config(args.config)
    except ConfigError as err:
        log.error('invalid configuration', config=args.config, error=str(err))
        return 1

    try:
        client = DockerCLI(log, dockerhost=conf.docker.dockerhost, api_version=conf.docker.api_version)
    except ClientError as err:
        log.error('cannot create docker client', error=str(err))
        return 1

    scheduler = Scheduler(Syncer(client, log), log)

    def handle_signal(signum, frame):
        log.info('stopping', signal=signal.Signals(signum).name)
        scheduler.stop()

    signal.signal(signal.SIGTERM, handle_signal)

    try:
        scheduler.run_all(conf.tasks)
    except KeyboardInterrupt:
        log.info('interrupted')
    finally:
        client.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
