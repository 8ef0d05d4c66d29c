"""
TLS provisioning: manual bundle validation and generated material.
"""

import ipaddress
import os
import ssl

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec

from minicluster import Config, ConfigurationError, ProvisioningError, TLSInfo, TLSProvisioner
from minicluster.config import TransportRole
from minicluster.tls import validate_tls_info


def _load(path):
    with open(path, "rb") as f:
        return x509.load_pem_x509_certificate(f.read())


def test_no_tls_resolves_to_empty_bundles(tmp_path):
    provisioner = TLSProvisioner(str(tmp_path))
    bundles = provisioner.resolve(Config(size=2, root_dir=str(tmp_path)), TransportRole.PEER)

    assert bundles == [TLSInfo(), TLSInfo()]
    assert not os.path.exists(tmp_path / "tls")
    assert provisioner.client_credentials() is None


def test_auto_tls_issues_one_leaf_per_node(tmp_path):
    provisioner = TLSProvisioner(str(tmp_path))
    config = Config(size=3, root_dir=str(tmp_path), peer_auto_tls=True)

    bundles = provisioner.resolve(config, TransportRole.PEER)

    assert len(bundles) == 3
    assert len({b.cert_file for b in bundles}) == 3
    assert len({b.trusted_ca_file for b in bundles}) == 1
    assert all(b.client_cert_auth for b in bundles)
    assert bundles[1].cert_file == str(tmp_path / "tls" / "peer" / "node1.pem")

    ca = _load(bundles[0].trusted_ca_file)
    for bundle in bundles:
        cert = _load(bundle.cert_file)
        assert cert.issuer == ca.subject
        assert isinstance(cert.public_key(), ec.EllipticCurvePublicKey)
        assert isinstance(cert.public_key().curve, ec.SECP256R1)
        sans = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert ipaddress.ip_address("127.0.0.1") in sans.get_values_for_type(x509.IPAddress)
        assert "localhost" in sans.get_values_for_type(x509.DNSName)


def test_auto_client_tls_does_not_require_client_certs(tmp_path):
    provisioner = TLSProvisioner(str(tmp_path))
    config = Config(size=1, root_dir=str(tmp_path), client_auto_tls=True)

    bundle = provisioner.resolve(config, TransportRole.CLIENT)[0]
    assert not bundle.client_cert_auth

    credentials = provisioner.client_credentials()
    assert credentials.trusted_ca_file == bundle.trusted_ca_file
    assert credentials.cert_file.endswith("client.pem")


def test_peer_and_client_use_separate_cas(tmp_path):
    provisioner = TLSProvisioner(str(tmp_path))
    config = Config(size=1, root_dir=str(tmp_path), peer_auto_tls=True, client_auto_tls=True)

    peer = provisioner.resolve(config, TransportRole.PEER)[0]
    client = provisioner.resolve(config, TransportRole.CLIENT)[0]

    assert peer.trusted_ca_file != client.trusted_ca_file
    assert _load(peer.trusted_ca_file).subject != _load(client.trusted_ca_file).subject


def test_issued_material_is_stable(tmp_path):
    provisioner = TLSProvisioner(str(tmp_path))
    config = Config(size=2, root_dir=str(tmp_path), peer_auto_tls=True)

    first = provisioner.resolve(config, TransportRole.PEER)
    with open(first[0].cert_file, "rb") as f:
        pem = f.read()

    second = provisioner.resolve(config, TransportRole.PEER)
    assert first == second
    with open(second[0].cert_file, "rb") as f:
        assert f.read() == pem


def test_generated_material_loads_into_ssl_contexts(tmp_path):
    provisioner = TLSProvisioner(str(tmp_path))
    config = Config(size=1, root_dir=str(tmp_path), peer_auto_tls=True)
    bundle = provisioner.resolve(config, TransportRole.PEER)[0]

    server = bundle.server_context()
    assert server.verify_mode == ssl.CERT_REQUIRED
    client = bundle.client_context()
    assert client.check_hostname


def test_manual_bundle_is_validated(test_tls):
    validate_tls_info(test_tls)


def test_manual_bundle_missing_file(test_tls, tmp_path):
    missing = TLSInfo(
        cert_file=str(tmp_path / "nope.pem"),
        key_file=test_tls.key_file,
        trusted_ca_file=test_tls.trusted_ca_file,
    )
    with pytest.raises(ConfigurationError):
        validate_tls_info(missing)


def test_manual_bundle_incomplete(test_tls):
    with pytest.raises(ConfigurationError):
        validate_tls_info(TLSInfo(cert_file=test_tls.cert_file, key_file=test_tls.key_file))


def test_manual_bundle_garbage(test_tls, tmp_path):
    garbage = tmp_path / "garbage.pem"
    garbage.write_text("not a certificate\n")

    with pytest.raises(ProvisioningError):
        validate_tls_info(TLSInfo(
            cert_file=str(garbage),
            key_file=test_tls.key_file,
            trusted_ca_file=test_tls.trusted_ca_file,
        ))
    with pytest.raises(ProvisioningError):
        validate_tls_info(TLSInfo(
            cert_file=test_tls.cert_file,
            key_file=str(garbage),
            trusted_ca_file=test_tls.trusted_ca_file,
        ))


def test_manual_bundle_shared_by_all_nodes(test_tls, tmp_path):
    provisioner = TLSProvisioner(str(tmp_path))
    config = Config(size=3, root_dir=str(tmp_path), client_tls_info=test_tls)

    assert provisioner.resolve(config, TransportRole.CLIENT) == [test_tls] * 3
    assert provisioner.resolve(config, TransportRole.PEER) == [TLSInfo()] * 3
