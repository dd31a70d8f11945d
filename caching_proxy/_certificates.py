from __future__ import annotations

import datetime
import ipaddress
import logging
import os
import typing as tp
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

logger = logging.getLogger("caching_proxy.ssl")

__all__ = ("generate_self_signed", "verify_certificate", "certificate_info")

KEY_SIZE = 2048


def generate_self_signed(
    hostname: str = "localhost",
    output_dir: tp.Union[str, Path] = ".",
    cert_file: str = "server.crt",
    key_file: str = "server.key",
    validity_days: int = 365,
) -> tp.Dict[str, Path]:
    """
    Create a self-signed certificate and its private key.

    The certificate is valid for ``hostname``, ``localhost`` and ``127.0.0.1``.
    The private key file is readable by its owner only.

    :param hostname: Common name of the certificate.
    :type hostname: str
    :param output_dir: Directory that receives both files; created if needed.
    :type output_dir: Union[str, Path]
    :param validity_days: Number of days the certificate stays valid.
    :type validity_days: int
    :return: ``{"cert": ..., "key": ...}`` with the written paths.
    :rtype: Dict[str, Path]
    """
    logger.info("Generating self-signed SSL certificate for %s", hostname)

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])

    alt_names: tp.List[x509.GeneralName] = [x509.DNSName(hostname)]
    if hostname != "localhost":
        alt_names.append(x509.DNSName("localhost"))
    alt_names.append(x509.IPAddress(ipaddress.ip_address("127.0.0.1")))

    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=validity_days))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                key_cert_sign=True,
                crl_sign=True,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()), critical=False)
        .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        .sign(private_key, hashes.SHA256())
    )

    cert_path = Path(output_dir) / cert_file
    key_path = Path(output_dir) / key_file
    for path in (cert_path, key_path):
        path.parent.mkdir(parents=True, exist_ok=True)

    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    os.chmod(key_path, 0o600)

    logger.info(
        "Generated SSL certificate %s (key %s), valid until %s", cert_path, key_path, certificate.not_valid_after_utc
    )
    return {"cert": cert_path, "key": key_path}


def _load_certificate(cert_file: tp.Union[str, Path]) -> tp.Optional[x509.Certificate]:
    try:
        return x509.load_pem_x509_certificate(Path(cert_file).read_bytes())
    except OSError as exc:
        logger.error("Cannot read certificate file %s: %s", cert_file, exc)
    except ValueError as exc:
        logger.error("Invalid certificate file %s: %s", cert_file, exc)
    return None


def _public_pem(public_key: tp.Any) -> bytes:
    return public_key.public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)


def _subject_alt_names(certificate: x509.Certificate) -> tp.List[str]:
    try:
        extension = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []

    names = [f"DNS:{value}" for value in extension.value.get_values_for_type(x509.DNSName)]
    names.extend(f"IP:{value}" for value in extension.value.get_values_for_type(x509.IPAddress))
    return names


def verify_certificate(cert_file: tp.Union[str, Path], key_file: tp.Union[str, Path]) -> bool:
    """
    Check that a certificate and key exist, parse, belong together and have not expired.
    """
    if not (Path(cert_file).exists() and Path(key_file).exists()):
        return False

    certificate = _load_certificate(cert_file)
    if certificate is None:
        return False

    try:
        private_key = serialization.load_pem_private_key(Path(key_file).read_bytes(), password=None)
    except OSError as exc:
        logger.error("Cannot read private key file %s: %s", key_file, exc)
        return False
    except (ValueError, TypeError) as exc:
        logger.error("Invalid private key file %s: %s", key_file, exc)
        return False

    if _public_pem(certificate.public_key()) != _public_pem(private_key.public_key()):
        logger.error("SSL certificate %s and private key %s don't match", cert_file, key_file)
        return False

    if certificate.not_valid_after_utc < datetime.datetime.now(datetime.timezone.utc):
        logger.warning("SSL certificate has expired (%s)", certificate.not_valid_after_utc)
        return False

    alt_names = _subject_alt_names(certificate)
    if alt_names and not any("localhost" in name for name in alt_names):
        logger.warning("SSL certificate may not be valid for localhost")

    return True


def certificate_info(cert_file: tp.Union[str, Path]) -> tp.Optional[tp.Dict[str, tp.Any]]:
    """Describe a certificate, or return None when it is missing or unreadable."""
    if not Path(cert_file).exists():
        logger.error("Certificate file %s does not exist", cert_file)
        return None

    certificate = _load_certificate(cert_file)
    if certificate is None:
        return None

    now = datetime.datetime.now(datetime.timezone.utc)
    if certificate.not_valid_after_utc < now:
        status = "EXPIRED"
    elif certificate.not_valid_before_utc > now:
        status = "NOT YET VALID"
    else:
        status = "VALID"

    public_key = certificate.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        key_algorithm = f"RSA ({public_key.key_size} bits)"
    else:
        key_algorithm = type(public_key).__name__

    return {
        "subject": certificate.subject.rfc4514_string(),
        "issuer": certificate.issuer.rfc4514_string(),
        "valid_from": certificate.not_valid_before_utc.isoformat(),
        "valid_until": certificate.not_valid_after_utc.isoformat(),
        "serial": certificate.serial_number,
        "status": status,
        "subject_alt_names": _subject_alt_names(certificate),
        "key_algorithm": key_algorithm,
    }
