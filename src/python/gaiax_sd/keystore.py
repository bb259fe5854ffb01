"""File-backed key store and output sink.

Both are the thin persistence collaborators of the pipeline: the core hands
them finished documents only after a generation request succeeded.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from gaiax_sd._crypto import load_jwk_file
from gaiax_sd.config import DEFAULT_KEY_ID
from gaiax_sd.errors import KeyLoadError
from gaiax_sd.keys import generate_jwk_pair

logger = logging.getLogger(__name__)

DOCUMENT_EXTENSIONS = (".json", ".jsonld", ".jwt")


@dataclass(frozen=True)
class KeyPair:
    public_key: dict
    private_key: dict


class KeyStore:
    """JWK key pair kept under a fixed directory."""

    PUBLIC_FILE = "publicKey.json"
    PRIVATE_FILE = "privateKey.json"

    def __init__(self, key_dir: str | Path = "output/keys"):
        self.key_dir = Path(key_dir)

    @property
    def public_key_path(self) -> Path:
        return self.key_dir / self.PUBLIC_FILE

    @property
    def private_key_path(self) -> Path:
        return self.key_dir / self.PRIVATE_FILE

    def load_keys(self) -> KeyPair | None:
        """Return the stored key pair, or None when none has been saved."""
        if not (self.public_key_path.is_file() and self.private_key_path.is_file()):
            logger.debug("No key pair in %s", self.key_dir)
            return None
        pair = KeyPair(
            public_key=load_jwk_file(self.public_key_path),
            private_key=load_jwk_file(self.private_key_path),
        )
        logger.info("Loaded key pair from %s", self.key_dir)
        return pair

    def save_keys(self, public_key: dict, private_key: dict) -> None:
        self.key_dir.mkdir(parents=True, exist_ok=True)
        self.public_key_path.write_text(json.dumps(public_key, indent=2))
        self.private_key_path.write_text(json.dumps(private_key, indent=2))
        logger.info("Saved key pair to %s", self.key_dir)

    def get_or_generate(self, kid: str = DEFAULT_KEY_ID) -> KeyPair:
        """Load the stored pair, generating and saving a P-256 pair if absent."""
        pair = self.load_keys()
        if pair is None:
            public_key, private_key = generate_jwk_pair("ES256", kid=kid)
            self.save_keys(public_key, private_key)
            pair = KeyPair(public_key=public_key, private_key=private_key)
        return pair


def resolve_signing_key(
    private_key: dict | None = None,
    key_path: str | Path | None = None,
    store: KeyStore | None = None,
) -> dict:
    """Pick the signing JWK: explicit material, then a key file, then the store."""
    if private_key is not None:
        if not isinstance(private_key, dict):
            raise KeyLoadError("Private key material must be a JWK object")
        return private_key
    if key_path is not None:
        logger.info("Using provided private key %s", key_path)
        return load_jwk_file(key_path)
    if store is None:
        raise KeyLoadError("No signing key supplied and no key store configured")
    return store.get_or_generate().private_key


class OutputSink:
    """Writes generated documents to disk."""

    @staticmethod
    def resolve_path(path: str | Path, default_file_name: str) -> Path:
        path = Path(path)
        if path.suffix.lower() in DOCUMENT_EXTENSIONS:
            return path
        return path / default_file_name

    def save(self, path: str | Path, default_file_name: str, document) -> Path:
        """Write ``document`` (dict as JSON, token as text) and return the path."""
        file_path = self.resolve_path(path, default_file_name)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(document, str):
            file_path.write_text(document + "\n")
        else:
            file_path.write_text(
                json.dumps(document, indent=2, ensure_ascii=False) + "\n"
            )
        logger.info("File saved to %s", file_path)
        return file_path

    def load_credential(self, path: str | Path):
        """Read a credential file: JSON documents as dicts, tokens as str."""
        text = Path(path).read_text().strip()
        if text.startswith("{") or text.startswith("["):
            return json.loads(text)
        return text
