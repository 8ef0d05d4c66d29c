"""
Shared fixtures for the cluster harness tests.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from minicluster import Config, PortAllocator, TLSInfo
from minicluster.tls import generate_ca, generate_leaf, write_cert, write_key


FAKE_NODE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fake_node.py")


@pytest.fixture(scope="session")
def port_allocator():
    """One allocator per test run so clusters never share ports."""
    base = int(os.environ.get("MINICLUSTER_TEST_PORT", "23100"))
    return PortAllocator(base=base, stride=10)


@pytest.fixture
def make_config(tmp_path, port_allocator):
    """Build a Config rooted in a fresh temporary directory."""
    counter = {"n": 0}

    def factory(size=3, **kwargs):
        counter["n"] += 1
        root_dir = tmp_path / f"cluster{counter['n']}"
        return Config(
            size=size,
            root_dir=str(root_dir),
            root_port=port_allocator.allocate(size),
            **kwargs
        )

    return factory


@pytest.fixture(scope="session")
def test_tls(tmp_path_factory):
    """A manual certificate bundle valid for 127.0.0.1 and localhost."""
    directory = tmp_path_factory.mktemp("test-certs")
    ca_cert, ca_key = generate_ca("test CA")
    cert, key = generate_leaf(ca_cert, ca_key, "test-cert", ["127.0.0.1", "localhost"])

    ca_path = str(directory / "trusted-ca.pem")
    cert_path = str(directory / "test-cert.pem")
    key_path = str(directory / "test-cert-key.pem")
    write_cert(ca_path, ca_cert)
    write_cert(cert_path, cert)
    write_key(key_path, key)

    return TLSInfo(
        cert_file=cert_path,
        key_file=key_path,
        trusted_ca_file=ca_path,
        client_cert_auth=True,
    )


def fake_node_command(mode="normal"):
    """Command line for tests/fake_node.py in the given mode."""
    return [sys.executable, FAKE_NODE, "--mode", mode]
