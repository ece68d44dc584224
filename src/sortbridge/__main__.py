import argparse
import logging
import signal
import sys

from sortbridge.config.config import ConfigurationError
from sortbridge.config.settings import Settings
from sortbridge.service import BridgeService

logger = logging.getLogger('sortbridge')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='sortbridge',
                                     description='Bridges sorting-line signals to visualization endpoints.')
    parser.add_argument('-c', '--config', help='configuration file overriding the defaults')
    parser.add_argument('-l', '--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='logging level')
    parser.add_argument('--relay', action='store_true', help='serve subscribers, whatever the configuration says')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format='%(asctime)s %(levelname)-7s %(name)s: %(message)s')
    try:
        settings = Settings.load(args.config)
    except ConfigurationError as e:
        logger.error("invalid configuration: %s" % e)
        return 1
    if args.relay:
        settings.relay.enabled = True

    service = BridgeService(settings)

    def terminate(signum, frame):
        service.loop.call_soon_threadsafe(service.shutdown)
    signal.signal(signal.SIGTERM, terminate)

    service.run()
    return 0


if __name__ == '__main__':
    sys.exit(main())
