# mqcheck/cli.py
import argparse
import logging
import sys
import uuid

import requests

from adapters.broker import build_factory
from adapters.management import ManagementClient

from . import errors
from .config import HarnessConfig
from .readiness import wait_until_ready
from .scenario import send_and_receive

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONNECTION = 2
EXIT_NOT_READY = 3


def cmd_ready(cfg: HarnessConfig, args) -> int:
    result = wait_until_ready(cfg.endpoint, max_attempts=args.attempts, interval=args.interval)
    return EXIT_OK if result else EXIT_FAILED


def cmd_healthy(cfg: HarnessConfig, args) -> int:
    client = ManagementClient(cfg.mgmt_url)
    try:
        healthy = client.aliveness(cfg.channel)
    except (requests.exceptions.RequestException, errors.SecurityRejected) as e:
        print(e, file=sys.stderr)
        return EXIT_CONNECTION
    return EXIT_OK if healthy else EXIT_FAILED


def cmd_send_receive(cfg: HarnessConfig, args) -> int:
    try:
        wait_until_ready(cfg.endpoint, cfg.ready_attempts, cfg.ready_interval).raise_for_status()
    except errors.ReadinessTimeout as e:
        print(e, file=sys.stderr)
        return EXIT_NOT_READY

    body = args.body or f"mqcheck {uuid.uuid4()}"
    try:
        config = build_factory(cfg.channel, cfg.endpoint, cfg.tls)
        received = send_and_receive(config, cfg.credentials, args.queue or cfg.queue, body, args.timeout or cfg.receive_timeout)
    except errors.SecurityConfigError as e:
        print(e, file=sys.stderr)
        return EXIT_CONNECTION
    except errors.ConnectionError as e:
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_CONNECTION

    if received != body:
        logger.error(f"Expected {body!r}, received {received!r}")
        return EXIT_FAILED
    print(received)
    return EXIT_OK


def main(argv=None):
    parser = argparse.ArgumentParser(prog="mqcheck")
    sub = parser.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("ready", help="Wait for the broker listener to accept connections")
    r.add_argument("--attempts", type=int, default=None)
    r.add_argument("--interval", type=float, default=None)

    sub.add_parser("healthy", help="Ask the management API whether the broker is alive")

    s = sub.add_parser("send-receive", help="Send one message and read it back")
    s.add_argument("-Q", "--queue", default=None)
    s.add_argument("--body", default=None)
    s.add_argument("--timeout", type=float, default=None)

    parser.add_argument("--loglevel", default=None, choices=["debug", "info", "warning", "error"])

    args = parser.parse_args(argv)

    try:
        cfg = HarnessConfig.from_env()
    except errors.ConfigError as e:
        print(e, file=sys.stderr)
        return EXIT_CONNECTION

    logging.basicConfig(
        level=getattr(logging, (args.loglevel or cfg.loglevel).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "ready":
        args.attempts = cfg.ready_attempts if args.attempts is None else args.attempts
        args.interval = cfg.ready_interval if args.interval is None else args.interval
        return cmd_ready(cfg, args)
    if args.cmd == "healthy":
        return cmd_healthy(cfg, args)
    return cmd_send_receive(cfg, args)


if __name__ == "__main__":
    sys.exit(main())
