"""Client credential body fields: client secret or certificate assertion.

Certificate credentials are turned into a signed JWT client assertion
(RFC 7523) the way MSAL does it: the private key signs a short-lived token
whose header carries the certificate's SHA-1 thumbprint ('x5t').
Both PEM files (key + certificate) and PKCS#12/PFX files are accepted.
"""

from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from msal.oauth2cli import JwtAssertionCreator

from aadtoken.auth.params import RequestParameters
from aadtoken.core.errors import ConfigurationError

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"

# Lifetime of each client assertion, in seconds
ASSERTION_LIFETIME_SECONDS = 600


def load_certificate(path: str, password: str | None = None) -> tuple[Any, str]:
    """Load a private key and certificate thumbprint from a PEM or PFX file.

    Args:
        path: Path to a .pem (private key + certificate) or .pfx/.p12 file
        password: Passphrase protecting the private key, if any

    Returns:
        Tuple of (private key object, SHA-1 thumbprint as hex)

    Raises:
        ConfigurationError: If the file is missing or cannot be parsed
    """
    cert_path = Path(path).expanduser()
    passphrase = password.encode("utf-8") if password else None
    try:
        raw = cert_path.read_bytes()
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read certificate file {cert_path}: {e}", fields=("certificate",)
        ) from e

    try:
        if cert_path.suffix.lower() in (".pfx", ".p12"):
            private_key, cert, _ = pkcs12.load_key_and_certificates(raw, passphrase)
        else:
            private_key = serialization.load_pem_private_key(raw, password=passphrase)
            cert = x509.load_pem_x509_certificate(raw)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
            f"Certificate file {cert_path} does not hold a usable private key and "
            f"certificate: {e}. Export it as PEM (key + cert) or PFX.",
            fields=("certificate", "certificate_password"),
        ) from e

    if private_key is None or cert is None:
        raise ConfigurationError(
            f"Certificate file {cert_path} must contain both the private key and the certificate",
            fields=("certificate",),
        )
    return private_key, cert.fingerprint(hashes.SHA1()).hex()  # noqa: S303


def client_assertion(params: RequestParameters, audience: str) -> str:
    """Create a signed client assertion for params.certificate.

    Args:
        params: Request parameters holding the certificate path and app ID
        audience: Token endpoint URL the assertion is presented to
    """
    private_key, thumbprint = load_certificate(params.certificate or "", params.certificate_password)
    creator = JwtAssertionCreator(private_key, algorithm="RS256", sha1_thumbprint=thumbprint)
    assertion = creator.create_normal_assertion(
        audience=audience,
        issuer=params.app,
        expires_in=ASSERTION_LIFETIME_SECONDS,
    )
    return assertion.decode("utf-8") if isinstance(assertion, bytes) else assertion


def client_credential_fields(params: RequestParameters, audience: str) -> dict[str, str]:
    """Body fields authenticating a confidential client, if it has credentials.

    Returns an empty dict for public clients.
    """
    if params.certificate:
        return {
            "client_assertion_type": CLIENT_ASSERTION_TYPE,
            "client_assertion": client_assertion(params, audience),
        }
    if params.client_secret:
        return {"client_secret": params.client_secret}
    return {}
