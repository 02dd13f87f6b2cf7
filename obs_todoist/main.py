#!/usr/bin/env python3
"""
obs-todoist - Obsidian ↔ Todoist task completion synchronization.
"""

import argparse
import logging
import sys

from obs_todoist.core.config import load_config, save_config, get_default_config_path
from obs_todoist.commands import (
    ConfigureCommand,
    SyncCommand,
    WatchCommand,
    StatusCommand,
    ValidateCommand,
    ResetJournalCommand,
)


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="obs-todoist",
        description="Completion sync between Obsidian task lines and Todoist",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  obs-todoist configure                     # Interactive configuration
  obs-todoist sync                          # Run one sync cycle
  obs-todoist sync --file Projects/Home.md  # Sync one document
  obs-todoist sync --task 6X7rM8997g3RQmvh  # Sync one task
  obs-todoist watch                         # Keep syncing until Ctrl-C
  obs-todoist status                        # Journal summary
        """
    )

    default_config = get_default_config_path()
    parser.add_argument(
        '--config',
        help=f'Path to configuration file (default: {default_config})',
        default=None
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    configure_parser = subparsers.add_parser('configure', help='Set vault, token and interval')
    configure_parser.add_argument('--vault', help='Obsidian vault path')
    configure_parser.add_argument('--token', help='Todoist API token')
    configure_parser.add_argument('--interval', type=float, help='Sync interval in minutes')

    sync_parser = subparsers.add_parser('sync', help='Run one sync cycle')
    target = sync_parser.add_mutually_exclusive_group()
    target.add_argument('--file', help='Only sync linked tasks in this vault-relative file')
    target.add_argument('--task', help='Only sync this Todoist task id')

    subparsers.add_parser('watch', help='Sync periodically until interrupted')
    subparsers.add_parser('status', help='Show journal summary and statistics')

    validate_parser = subparsers.add_parser('validate', help='Check task paths and journal completeness')
    validate_parser.add_argument(
        '--heal',
        action='store_true',
        help='Add linked tasks missing from the journal'
    )

    reset_parser = subparsers.add_parser('reset-journal', help='Back up and empty the sync journal')
    reset_parser.add_argument('--yes', action='store_true', help='Confirm the reset')

    return parser


def main(argv=None):
    """Main entry point for obs-todoist."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT)
    elif args.command == 'watch':
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    if not args.command:
        parser.print_help()
        return 1

    config = load_config(args.config)

    if args.verbose:
        actual_config_path = args.config if args.config else get_default_config_path()
        print(f"Using config: {actual_config_path}")

    try:
        if args.command == 'configure':
            cmd = ConfigureCommand(config, verbose=args.verbose)
            success = cmd.run(vault_path=args.vault, api_token=args.token, interval_minutes=args.interval)
            if success:
                save_config(config, args.config)

        elif args.command == 'sync':
            cmd = SyncCommand(config, verbose=args.verbose)
            success = cmd.run(file_path=args.file, task_id=args.task)

        elif args.command == 'watch':
            cmd = WatchCommand(config, verbose=args.verbose)
            success = cmd.run()

        elif args.command == 'status':
            cmd = StatusCommand(config, verbose=args.verbose)
            success = cmd.run()

        elif args.command == 'validate':
            cmd = ValidateCommand(config, verbose=args.verbose)
            success = cmd.run(heal=args.heal)

        elif args.command == 'reset-journal':
            cmd = ResetJournalCommand(config, verbose=args.verbose)
            success = cmd.run(confirmed=args.yes)

        else:
            print(f"Unknown command '{args.command}'.")
            return 1

        return 0 if success else 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        return 130
    except Exception as e:
        print(f"Error: {e}")
        if not args.verbose:
            print("Re-run with --verbose for more detail.")
        else:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
