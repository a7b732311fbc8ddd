#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
IMAP IDLE daemon.
Keeps an IDLE connection open and runs a command whenever new mail arrives,
and optionally at a fixed interval. Reconnects on failures, with exponential
backoff while the server cannot be reached.
"""

import argparse
import sys

import config_data
import imap_utils


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Uses IMAP IDLE to run a command whenever a new email arrives"
    )
    parser.add_argument("-s", "--server", required=True, help="IMAP server domain")
    parser.add_argument(
        "--port", type=int, default=config_data.default_imap_port, help="IMAP server port"
    )
    parser.add_argument("-u", "--username", required=True, help="IMAP user name")
    parser.add_argument(
        "-p",
        "--password",
        help=f"IMAP password (${config_data.password_env_var} takes priority, "
        "prompted for if neither is given)",
    )
    parser.add_argument(
        "-i",
        "--interval",
        type=int,
        help="interval (in seconds) at which to run even if no email arrives",
    )
    parser.add_argument(
        "-c", "--command", required=True, help="command to run when new mail arrives"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="show all server responses",
    )
    parser.add_argument(
        "--mailbox", default=config_data.default_mailbox, help="mailbox to watch"
    )
    parser.add_argument(
        "--read-timeout",
        type=float,
        default=config_data.default_read_timeout,
        help="seconds without server data before reconnecting",
    )
    parser.add_argument(
        "--reconnect-delay",
        type=float,
        default=config_data.default_reconnect_delay,
        help="seconds to wait after a dropped connection",
    )
    parser.add_argument(
        "--max-backoff",
        type=float,
        default=config_data.default_backoff_max,
        help="longest wait between attempts while the server is unreachable",
    )
    args = parser.parse_args(argv)

    if args.interval is not None and args.interval <= 0:
        parser.error("--interval must be positive")
    # a zero timeout would make the socket non-blocking
    if args.read_timeout <= 0:
        parser.error("--read-timeout must be positive")
    if args.reconnect_delay < 0:
        parser.error("--reconnect-delay must not be negative")
    if args.max_backoff <= 0:
        parser.error("--max-backoff must be positive")
    return args


def build_config(args, password):
    return config_data.SessionConfig(
        server=args.server,
        port=args.port,
        username=args.username,
        password=password,
        command=args.command,
        interval=args.interval,
        verbose=args.verbose,
        mailbox=args.mailbox,
        read_timeout=args.read_timeout,
        reconnect_delay=args.reconnect_delay,
        backoff_max=args.max_backoff,
    )


def main(argv=None):
    args = parse_args(argv)
    password = imap_utils.get_credential(
        config_data.password_env_var, args.password, "Password: "
    )
    config = build_config(args, password)

    try:
        imap_utils.run(config)
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
        return 130
    except Exception as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
