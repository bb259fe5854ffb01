"""Signing key generation and JWK/did:key encoding for P-256 and Ed25519.

Keys leave this module as JWK dicts; the key store persists them and the
signer imports them back through :mod:`gaiax_sd._crypto`.
"""

import base64

import base58
from cryptography.hazmat.primitives.asymmetric.ec import (
    SECP256R1,
    EllipticCurvePrivateKey,
    EllipticCurvePublicKey,
    EllipticCurvePublicNumbers,
    generate_private_key,
)
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from gaiax_sd.config import DEFAULT_KEY_ID
from gaiax_sd.errors import KeyLoadError

# Multicodec prefixes (varint-encoded)
_ED25519_MULTICODEC_PREFIX = b"\xed\x01"  # ed25519-pub 0xed
_P256_MULTICODEC_PREFIX = b"\x80\x24"  # p256-pub 0x1200

PUBLIC_JWK_MEMBERS = ("kty", "crv", "x", "y", "kid", "alg", "use")


# ---------------------------------------------------------------------------
# Key pairs as JWK
# ---------------------------------------------------------------------------


def generate_jwk_pair(
    algorithm: str = "ES256", kid: str = DEFAULT_KEY_ID
) -> tuple[dict, dict]:
    """Generate a fresh key pair and return ``(public_jwk, private_jwk)``.

    Both JWKs carry ``kid``. ES256 produces an EC/P-256 key, EdDSA an
    OKP/Ed25519 key.
    """
    if algorithm == "ES256":
        private_key = generate_private_key(SECP256R1())
        private_jwk = _p256_private_jwk(private_key)
    elif algorithm == "EdDSA":
        private_key = Ed25519PrivateKey.generate()
        private_jwk = _ed25519_private_jwk(private_key)
    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    private_jwk["kid"] = kid
    return public_jwk(private_jwk), private_jwk


def public_jwk(jwk: dict) -> dict:
    """Return the public members of a JWK (drops the private ``d``)."""
    return {k: jwk[k] for k in PUBLIC_JWK_MEMBERS if k in jwk}


def _p256_private_jwk(private_key: EllipticCurvePrivateKey) -> dict:
    numbers = private_key.private_numbers()
    pub = numbers.public_numbers
    return {
        "kty": "EC",
        "crv": "P-256",
        "x": _b64url(pub.x.to_bytes(32, "big")),
        "y": _b64url(pub.y.to_bytes(32, "big")),
        "d": _b64url(numbers.private_value.to_bytes(32, "big")),
    }


def _ed25519_private_jwk(private_key: Ed25519PrivateKey) -> dict:
    raw_private = private_key.private_bytes(
        Encoding.Raw, PrivateFormat.Raw, NoEncryption()
    )
    raw_public = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return {
        "kty": "OKP",
        "crv": "Ed25519",
        "x": _b64url(raw_public),
        "d": _b64url(raw_private),
    }


# ---------------------------------------------------------------------------
# did:key
# ---------------------------------------------------------------------------


def jwk_to_public_key(jwk: dict) -> Ed25519PublicKey | EllipticCurvePublicKey:
    """Rebuild a cryptography public key from a JWK."""
    try:
        if jwk.get("kty") == "EC" and jwk.get("crv") == "P-256":
            x = int.from_bytes(_b64url_decode(jwk["x"]), "big")
            y = int.from_bytes(_b64url_decode(jwk["y"]), "big")
            return EllipticCurvePublicNumbers(x, y, SECP256R1()).public_key()
        if jwk.get("kty") == "OKP" and jwk.get("crv") == "Ed25519":
            return Ed25519PublicKey.from_public_bytes(_b64url_decode(jwk["x"]))
    except (KeyError, ValueError) as e:
        raise KeyLoadError(f"Malformed JWK: {e}") from e
    raise KeyLoadError(f"Unsupported key type: {jwk.get('kty')}/{jwk.get('crv')}")


def did_key_for_jwk(jwk: dict) -> str:
    """Derive a did:key identifier (z6Mk... or zDn...) from a JWK."""
    public_key = jwk_to_public_key(jwk)
    if isinstance(public_key, Ed25519PublicKey):
        raw = public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
        prefixed = _ED25519_MULTICODEC_PREFIX + raw
    else:
        # Compressed SEC1 encoding (33 bytes)
        compressed = public_key.public_bytes(
            Encoding.X962, PublicFormat.CompressedPoint
        )
        prefixed = _P256_MULTICODEC_PREFIX + compressed
    return "did:key:z" + base58.b58encode(prefixed).decode()


def did_key_verification_method(jwk: dict) -> str:
    """did:key verification method id (``did:key:z...#z...``)."""
    did = did_key_for_jwk(jwk)
    return f"{did}#{did.split(':')[-1]}"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _b64url(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    """Base64url decode with padding restoration."""
    s += "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s)
