"""
Entry point for the MentorConnect relay.
This module provides a command-line interface to start the relay server.
"""

import argparse

from MentorConnect.start import server


def parse(argv=None):
    # Initialize argument parser for command line interface
    parser = argparse.ArgumentParser(prog='MentorConnect', description='MentorConnect relay starter')
    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    # Setup server command line arguments
    server_parser = subparsers.add_parser('server', help='Startup websocket SERVER and HTTP api')
    server_parser.add_argument('--host', default=None, help='listening address (default: localhost)')
    server_parser.add_argument('--port', type=int, default=None, help='websocket port (default: 8765)')
    server_parser.add_argument('--api-port', type=int, default=None, help='HTTP api port (default: 8766)')
    server_parser.add_argument('--db', default=None, help='SQLite database file (default: mentorconnect.db)')

    # Add 'srv-only' command
    srv_parser = subparsers.add_parser('srv-only', help='Startup server (ws server)')
    srv_parser.add_argument('--host', default=None, help='listening address (default: localhost)')
    srv_parser.add_argument('--port', type=int, default=None, help='server port (default: 8765)')
    srv_parser.add_argument('--db', default=None, help='SQLite database file (default: mentorconnect.db)')

    args = parser.parse_args(argv)

    return args


def main(argv=None):
    args = parse(argv)

    if args.command == 'server':
        server.server(host=args.host, port=args.port, api_port=args.api_port, db_path=args.db)
    elif args.command == 'srv-only':
        server.server(host=args.host, port=args.port, db_path=args.db, srv_only=True)
    else:
        raise Exception('Unknown command')


if __name__ == '__main__':
    main()
