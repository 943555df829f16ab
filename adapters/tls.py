# adapters/tls.py
import logging
import ssl
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, pkcs12

from mqcheck.config import TLS12_OR_HIGHER, CipherPolicy, TlsMaterial
from mqcheck.errors import SecurityConfigError

logger = logging.getLogger(__name__)

# Both labels name the same suite; the SSL_ spelling is what IBM JREs expect
POLICY_CIPHER_SUITES = {
    CipherPolicy.LEGACY_MAPPED: "SSL_RSA_WITH_AES_128_CBC_SHA256",
    CipherPolicy.STANDARD: "TLS_RSA_WITH_AES_128_CBC_SHA256",
}

# IANA suite name -> OpenSSL cipher string
OPENSSL_CIPHERS = {
    "TLS_RSA_WITH_AES_128_CBC_SHA256": "AES128-SHA256",
    "TLS_RSA_WITH_AES_256_CBC_SHA256": "AES256-SHA256",
    "TLS_RSA_WITH_AES_128_GCM_SHA256": "AES128-GCM-SHA256",
    "TLS_RSA_WITH_AES_256_GCM_SHA384": "AES256-GCM-SHA384",
    "TLS_ECDHE_RSA_WITH_AES_128_CBC_SHA256": "ECDHE-RSA-AES128-SHA256",
    "TLS_ECDHE_RSA_WITH_AES_128_GCM_SHA256": "ECDHE-RSA-AES128-GCM-SHA256",
    "TLS_ECDHE_RSA_WITH_AES_256_GCM_SHA384": "ECDHE-RSA-AES256-GCM-SHA384",
    "TLS_ECDHE_ECDSA_WITH_AES_128_GCM_SHA256": "ECDHE-ECDSA-AES128-GCM-SHA256",
    "TLS_ECDHE_ECDSA_WITH_AES_256_GCM_SHA384": "ECDHE-ECDSA-AES256-GCM-SHA384",
}


def select_cipher_suite(tls: TlsMaterial) -> str:
    """Suite label to negotiate: an explicit cipher name wins over the policy default."""
    return tls.cipher_spec or POLICY_CIPHER_SUITES[tls.cipher_policy]


def openssl_cipher(suite: str) -> Optional[str]:
    """
    Translate a suite label into an OpenSSL cipher string.

    Returns None for the TLS 1.2-or-higher alias, which leaves cipher choice
    to the library defaults.
    """
    if suite == TLS12_OR_HIGHER:
        return None
    name = suite.upper()
    if name.startswith("SSL_"):
        name = "TLS_" + name[4:]
    try:
        return OPENSSL_CIPHERS[name]
    except KeyError:
        raise SecurityConfigError(f"Unsupported cipher suite: {suite}") from None


def load_truststore(path: str, passphrase: str) -> List[x509.Certificate]:
    """Read every certificate out of a PKCS#12 trust store."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise SecurityConfigError(f"Cannot read trust store {path}: {e}") from e

    password = passphrase.encode() if passphrase else None
    try:
        _, cert, additional = pkcs12.load_key_and_certificates(data, password)
    except ValueError as e:
        raise SecurityConfigError(
            f"Cannot open trust store {path}: wrong passphrase or not PKCS#12"
        ) from e

    certs = ([cert] if cert is not None else []) + list(additional)
    if not certs:
        raise SecurityConfigError(f"Trust store {path} contains no certificates")
    logger.debug(f"Loaded {len(certs)} certificate(s) from {path}")
    return certs


def create_tls_context(tls: TlsMaterial) -> ssl.SSLContext:
    """
    Client TLS context trusting only the certificates in the trust store.

    Pinned to TLS 1.2 with the selected suite, or TLS 1.2 minimum with
    library-default ciphers for the ``*TLS12ORHIGHER`` alias. All failures
    surface as SecurityConfigError before any socket is opened.
    """
    certs = load_truststore(tls.truststore_path, tls.passphrase)
    suite = select_cipher_suite(tls)
    cipher = openssl_cipher(suite)

    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    # Peer chain is checked against the trust store; host names are not
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_REQUIRED
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    try:
        if cipher is not None:
            ctx.maximum_version = ssl.TLSVersion.TLSv1_2
            ctx.set_ciphers(cipher)
        ctx.load_verify_locations(
            cadata="".join(c.public_bytes(Encoding.PEM).decode("ascii") for c in certs)
        )
    except ssl.SSLError as e:
        raise SecurityConfigError(f"Cannot apply TLS settings ({suite}): {e}") from e

    return ctx
