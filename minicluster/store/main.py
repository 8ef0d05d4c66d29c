"""
Entry point for running a store node process.
"""

import argparse
import logging
import signal
import sys
import threading

from ..config import TLSInfo
from .node import StoreConfig, StoreNode


def parse_peers(value: str) -> dict:
    """Parse "name=host:port,..." into {name: "host:port"}."""
    peers = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, address = item.partition("=")
        if not sep or ":" not in address:
            raise argparse.ArgumentTypeError(f"invalid peer {item!r}, expected name=host:port")
        peers[name] = address
    return peers


def _add_tls_arguments(parser: argparse.ArgumentParser, role: str):
    parser.add_argument(f"--{role}-cert-file", default="",
                        help=f"Certificate for the {role} transport")
    parser.add_argument(f"--{role}-key-file", default="",
                        help=f"Private key for the {role} transport")
    parser.add_argument(f"--{role}-trusted-ca-file", default="",
                        help=f"CA used to verify {role} certificates")
    parser.add_argument(f"--{role}-client-cert-auth", action="store_true",
                        help=f"Require client certificates on the {role} transport")


def _tls_info(args: argparse.Namespace, role: str) -> TLSInfo:
    return TLSInfo(
        cert_file=getattr(args, f"{role}_cert_file"),
        key_file=getattr(args, f"{role}_key_file"),
        trusted_ca_file=getattr(args, f"{role}_trusted_ca_file"),
        client_cert_auth=getattr(args, f"{role}_client_cert_auth"),
    )


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="minicluster store node")

    parser.add_argument("--name", required=True, help="Unique node name")
    parser.add_argument("--data-dir", required=True, help="Directory for persisted data")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--client-port", type=int, required=True, help="Client port")
    parser.add_argument("--peer-port", type=int, required=True, help="Peer port")
    parser.add_argument("--peers", type=parse_peers, default={},
                        help="Comma-separated name=host:peer_port list, self included")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    _add_tls_arguments(parser, "client")
    _add_tls_arguments(parser, "peer")

    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stdout,
    )
    logger = logging.getLogger(f"minicluster.store.{args.name}")

    config = StoreConfig(
        name=args.name,
        data_dir=args.data_dir,
        host=args.host,
        client_port=args.client_port,
        peer_port=args.peer_port,
        peers=args.peers,
        client_tls=_tls_info(args, "client"),
        peer_tls=_tls_info(args, "peer"),
    )

    stop_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        node = StoreNode(config)
    except (OSError, ValueError) as e:
        logger.error(f"Invalid node configuration: {e}")
        return 1

    try:
        node.start()
    except OSError as e:
        logger.error(f"Failed to start: {e}")
        node.stop()
        return 1

    stop_event.wait()
    node.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
