"""
Demo of the cluster harness.
Starts a 3-node cluster with auto TLS, writes through it, crashes and
restarts a node, and reads the data back.
"""

import logging
import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from minicluster import Cluster, Config


def print_header(text):
    """Print a section header."""
    print("\n" + "=" * 60)
    print(f" {text}")
    print("=" * 60)


def demo():
    """Run the cluster demo."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
    root_dir = tempfile.mkdtemp(prefix="minicluster-demo-")

    config = Config(
        size=3,
        root_dir=root_dir,
        root_port=21300,
        peer_auto_tls=True,
        client_auto_tls=True,
    )

    print_header("Step 1: Starting 3-Node Cluster")
    with Cluster.start(config) as cluster:
        cluster.wait_ready()
        for endpoint in cluster.all_endpoints(use_scheme=True):
            print(f"  {endpoint}")

        print_header("Step 2: Writing Data")
        with cluster.client(use_scheme=True) as client:
            for key, value in [("user:alice", "30"), ("user:bob", "25"), ("config:app", "production")]:
                version = client.put(key, value)
                print(f"  SET {key}={value} (version {version})")

        print_header("Step 3: Stopping node0")
        cluster.stop(0)
        print(f"  Running endpoints: {cluster.all_endpoints()}")

        print_header("Step 4: Restarting node0")
        cluster.restart(0)
        cluster.wait_ready()

        print_header("Step 5: Reading Back")
        with cluster.client(use_scheme=True) as client:
            for key in client.keys("*"):
                print(f"  GET {key}: {client.get(key)}")
            print(f"  STATUS: {client.status()}")

    print_header("Demo Complete!")
    print(f"Node data and logs are in {root_dir}")


if __name__ == "__main__":
    demo()
