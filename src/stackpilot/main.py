from .pilot import StackPilot, LogLevel
from . import __version__
import argparse
import sys


def main():
    bootstrap_parser = argparse.ArgumentParser(add_help=False)
    bootstrap_parser.add_argument('--version', action='version', version=f'StackPilot {__version__}')
    bootstrap_parser.add_argument('--config', '-c', type=str, default='stackpilot.yml')
    bootstrap_parser.add_argument('--log-level', '-l', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], default='INFO')
    known_args, _ = bootstrap_parser.parse_known_args()

    try:
        log_level_enum = LogLevel[known_args.log_level]
    except KeyError:
        log_level_enum = LogLevel.INFO

    pilot = StackPilot(config_file=known_args.config, log_level=log_level_enum)
    sys.exit(pilot.run_cli())


if __name__ == "__main__":
    main()
