"""
TLS material for the peer and client transports.

Manual bundles are validated; auto mode generates a self-signed CA per
transport and one leaf certificate per node signed by it.
"""

import datetime
import ipaddress
import logging
import os
from typing import Dict, List, Optional, Tuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .config import Config, TLSInfo, TransportRole, node_name
from .errors import ConfigurationError, ProvisioningError


CERT_VALIDITY = datetime.timedelta(days=365)
CLIENT_IDENTITY = "client"


def _load_file(path: str, what: str) -> bytes:
    with open(path, "rb") as f:
        data = f.read()
    if not data.strip():
        raise ProvisioningError(f"{what} file {path} is empty")
    return data


def validate_tls_info(info: TLSInfo):
    """
    Check that a manual bundle names existing, parseable PEM files.

    Raises:
        ConfigurationError: a path is missing or does not exist
        ProvisioningError: a file exists but does not parse
    """
    paths = [
        ("certificate", info.cert_file),
        ("key", info.key_file),
        ("trusted CA", info.trusted_ca_file),
    ]
    for what, path in paths:
        if not path:
            raise ConfigurationError(f"manual TLS bundle has no {what} file")
        if not os.path.isfile(path):
            raise ConfigurationError(f"{what} file {path} does not exist")

    try:
        x509.load_pem_x509_certificate(_load_file(info.cert_file, "certificate"))
        serialization.load_pem_private_key(_load_file(info.key_file, "key"), password=None)
        x509.load_pem_x509_certificate(_load_file(info.trusted_ca_file, "trusted CA"))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ProvisioningError(f"invalid TLS bundle {info}: {e}") from e


def _name(common_name: str) -> x509.Name:
    return x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "minicluster"),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])


def _san_entry(host: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(host))
    except ValueError:
        return x509.DNSName(host)


def generate_ca(common_name: str) -> Tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Create a self-signed certificate authority."""
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.datetime.now(datetime.timezone.utc)
    name = _name(common_name)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + CERT_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .add_extension(x509.KeyUsage(
            digital_signature=True, content_commitment=False, key_encipherment=False,
            data_encipherment=False, key_agreement=False, key_cert_sign=True,
            crl_sign=True, encipher_only=False, decipher_only=False,
        ), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(key, hashes.SHA256())
    )
    return cert, key


def generate_leaf(ca_cert: x509.Certificate, ca_key: ec.EllipticCurvePrivateKey,
                  common_name: str, hosts: List[str]
                  ) -> Tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Create a certificate for server and client use, signed by the CA."""
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.datetime.now(datetime.timezone.utc)

    sans = []
    for host in hosts:
        entry = _san_entry(host)
        if entry not in sans:
            sans.append(entry)

    cert = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + CERT_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.KeyUsage(
            digital_signature=True, content_commitment=False, key_encipherment=False,
            data_encipherment=False, key_agreement=False, key_cert_sign=False,
            crl_sign=False, encipher_only=False, decipher_only=False,
        ), critical=True)
        .add_extension(x509.ExtendedKeyUsage([
            ExtendedKeyUsageOID.SERVER_AUTH,
            ExtendedKeyUsageOID.CLIENT_AUTH,
        ]), critical=False)
        .add_extension(x509.SubjectAlternativeName(sans), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )
    return cert, key


def write_cert(path: str, cert: x509.Certificate):
    with open(path, "wb") as f:
        f.write(cert.public_bytes(serialization.Encoding.PEM))


def write_key(path: str, key: ec.EllipticCurvePrivateKey):
    data = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)


class TLSProvisioner:
    """
    Resolves each transport's TLS mode into per-node bundles.

    Generated material lives under <work_dir>/tls/<role>/ and is issued once
    per (role, identity); later requests return the same files.
    """

    def __init__(self, work_dir: str):
        self.work_dir = work_dir
        self._cas: Dict[TransportRole, Tuple[x509.Certificate, ec.EllipticCurvePrivateKey, str]] = {}
        self._issued: Dict[Tuple[TransportRole, str], TLSInfo] = {}
        self.logger = logging.getLogger("minicluster.tls")

    def role_dir(self, role: TransportRole) -> str:
        return os.path.join(self.work_dir, "tls", role.value)

    def resolve(self, config: Config, role: TransportRole) -> List[TLSInfo]:
        """Return the bundle each node index uses for the given transport."""
        manual = config.tls_info(role)
        if config.auto_tls(role):
            hosts = [config.host, "localhost", "127.0.0.1"]
            return [
                self.issue(role, node_name(index), hosts,
                           client_cert_auth=(role == TransportRole.PEER))
                for index in range(config.size)
            ]
        if not manual.empty():
            validate_tls_info(manual)
            self.logger.info(f"Using manual {role.value} TLS bundle {manual.cert_file}")
            return [manual] * config.size
        return [TLSInfo()] * config.size

    def issue(self, role: TransportRole, identity: str, hosts: List[str],
              client_cert_auth: bool = False) -> TLSInfo:
        """Issue (or return the already issued) leaf for an identity."""
        cached = self._issued.get((role, identity))
        if cached is not None:
            return cached

        ca_cert, ca_key, ca_path = self._ca(role)
        directory = self.role_dir(role)
        cert_path = os.path.join(directory, f"{identity}.pem")
        key_path = os.path.join(directory, f"{identity}-key.pem")
        try:
            cert, key = generate_leaf(ca_cert, ca_key, identity, hosts)
            write_cert(cert_path, cert)
            write_key(key_path, key)
        except (OSError, ValueError, TypeError) as e:
            raise ProvisioningError(f"cannot issue {role.value} certificate for {identity}: {e}") from e

        info = TLSInfo(
            cert_file=cert_path,
            key_file=key_path,
            trusted_ca_file=ca_path,
            client_cert_auth=client_cert_auth,
        )
        self._issued[(role, identity)] = info
        self.logger.debug(f"Issued {role.value} certificate for {identity}")
        return info

    def client_credentials(self, role: TransportRole = TransportRole.CLIENT) -> Optional[TLSInfo]:
        """Credentials a caller presents to an auto-TLS transport, if one exists."""
        if role not in self._cas:
            return None
        return self.issue(role, CLIENT_IDENTITY, ["localhost", "127.0.0.1"])

    def _ca(self, role: TransportRole):
        if role in self._cas:
            return self._cas[role]

        directory = self.role_dir(role)
        ca_path = os.path.join(directory, "ca.pem")
        try:
            os.makedirs(directory, exist_ok=True)
            cert, key = generate_ca(f"minicluster {role.value} CA")
            write_cert(ca_path, cert)
            write_key(os.path.join(directory, "ca-key.pem"), key)
        except (OSError, ValueError, TypeError) as e:
            raise ProvisioningError(f"cannot create {role.value} CA: {e}") from e

        self.logger.info(f"Generated {role.value} CA at {ca_path}")
        self._cas[role] = (cert, key, ca_path)
        return self._cas[role]
