"""
Stand-in node process for lifecycle tests.

Accepts the store node's flags, opens the client and peer ports and idles.
--mode changes how it misbehaves.
"""

import argparse
import signal
import socket
import sys
import time


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--mode", default="normal",
                        choices=["normal", "ignore-term", "exit", "no-listen"])
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--client-port", type=int, required=True)
    parser.add_argument("--peer-port", type=int, required=True)
    args, _ = parser.parse_known_args()

    if args.mode == "exit":
        return 3
    if args.mode == "ignore-term":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    sockets = []
    if args.mode != "no-listen":
        for port in (args.client_port, args.peer_port):
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((args.host, port))
            sock.listen(16)
            sockets.append(sock)

    while True:
        time.sleep(0.1)


if __name__ == "__main__":
    sys.exit(main())
