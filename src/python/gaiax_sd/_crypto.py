"""Bridge from JWK key material to joserfc signing keys.

Internal module, used by the signer and the key store.
"""

import json
from pathlib import Path

from joserfc.jwk import ECKey, OKPKey

from gaiax_sd.errors import KeyLoadError

_IMPORTABLE_MEMBERS = ("kty", "crv", "x", "y", "d")


def import_signing_key(jwk: dict) -> tuple[ECKey | OKPKey, str]:
    """Import a private JWK into a joserfc key and return ``(key, alg)``.

    Raises:
        KeyLoadError: If the JWK is not a P-256 or Ed25519 private key.
    """
    if not isinstance(jwk, dict):
        raise KeyLoadError(f"Expected a JWK object, got {type(jwk).__name__}")
    if "d" not in jwk:
        raise KeyLoadError("JWK has no private component ('d')")

    material = {k: jwk[k] for k in _IMPORTABLE_MEMBERS if k in jwk}
    kty, crv = jwk.get("kty"), jwk.get("crv")
    try:
        if kty == "EC" and crv == "P-256":
            return ECKey.import_key(material), "ES256"
        if kty == "OKP" and crv == "Ed25519":
            return OKPKey.import_key(material), "EdDSA"
    except (ValueError, TypeError, KeyError) as e:
        raise KeyLoadError(f"Malformed {kty}/{crv} JWK: {e}") from e
    raise KeyLoadError(f"Unsupported key type: {kty}/{crv}")


def load_jwk_file(jwk_path: str | Path) -> dict:
    """Read a JWK from a JSON file."""
    try:
        jwk = json.loads(Path(jwk_path).read_text())
    except OSError as e:
        raise KeyLoadError(f"Cannot read key file {jwk_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise KeyLoadError(f"Key file {jwk_path} is not valid JSON: {e}") from e
    if not isinstance(jwk, dict):
        raise KeyLoadError(f"Key file {jwk_path} does not hold a JWK object")
    return jwk
