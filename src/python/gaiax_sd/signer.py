"""Sign self-description credentials and extend existing proof chains.

Two proof formats exist, chosen by the ontology version profile:

- ``jws`` (Tagus): a ``JsonWebSignature2020`` proof object holding a detached
  JWS (``b64=false``) over the canonical JSON of the document.
- ``jwt`` (Loire): the document becomes the payload of a compact JWS with a
  ``vc+ld+json+jwt`` / ``vp+ld+json+jwt`` media type.

A document that already carries proofs is never re-signed from scratch:
the new proof is appended to the chain and linked to its predecessor
through ``previousProof``.

Usage:
    manager = ProofChainManager()
    signed = manager.sign(vc, "22.10 (Tagus)", private_jwk, "did:web:example.com#key-0")
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime, timezone

from joserfc import jws
from joserfc.jwk import ECKey, OKPKey
from joserfc.registry import HeaderParameter

from gaiax_sd._crypto import import_signing_key
from gaiax_sd.composer import credential_types, new_urn
from gaiax_sd.errors import PreviousProofNotFoundError
from gaiax_sd.versions import get_profile

logger = logging.getLogger(__name__)

JWS_PROOF_TYPE = "JsonWebSignature2020"
JWT_PROOF_TYPE = "JwtProof2020"
PROOF_PURPOSE = "assertionMethod"

_JWT_HEADER_REGISTRY = {"iss": HeaderParameter("Issuer", "str")}


# ---------------------------------------------------------------------------
# Proof strategies
# ---------------------------------------------------------------------------


class ProofStrategy:
    """Signs an unsigned document, either whole or as a single proof object."""

    def sign(self, document: dict, key: ECKey | OKPKey, alg: str, verification_method: str):
        raise NotImplementedError

    def create_proof(
        self, document: dict, key: ECKey | OKPKey, alg: str, verification_method: str
    ) -> dict:
        raise NotImplementedError


class DetachedJwsStrategy(ProofStrategy):
    """JsonWebSignature2020 proof object embedded in the document."""

    def sign(self, document, key, alg, verification_method) -> dict:
        signed = copy.deepcopy(document)
        proof = {"id": new_urn(), **self.create_proof(signed, key, alg, verification_method)}
        signed["proof"] = proof
        return signed

    def create_proof(self, document, key, alg, verification_method) -> dict:
        payload = _canonicalize(document)
        protected = {"alg": alg, "b64": False, "crit": ["b64"]}
        token = jws.serialize_compact(protected, payload, key, algorithms=[alg])

        # The unencoded payload may itself contain dots
        header = token.split(".", 1)[0]
        signature = token.rsplit(".", 1)[1]
        return {
            "type": JWS_PROOF_TYPE,
            "created": _created(),
            "proofPurpose": PROOF_PURPOSE,
            "verificationMethod": verification_method,
            "jws": f"{header}..{signature}",
        }


class CompactJwtStrategy(ProofStrategy):
    """Document re-encoded as the payload of a compact JWS."""

    def sign(self, document, key, alg, verification_method) -> str:
        return sign_compact(document, key, alg, verification_method)

    def create_proof(self, document, key, alg, verification_method) -> dict:
        return {
            "type": JWT_PROOF_TYPE,
            "created": _created(),
            "proofPurpose": PROOF_PURPOSE,
            "verificationMethod": verification_method,
            "jwt": sign_compact(document, key, alg, verification_method),
        }


def sign_compact(
    document: dict, key: ECKey | OKPKey, alg: str, verification_method: str
) -> str:
    """Sign a VC or VP as compact JWS with the ``+ld+json`` media types.

    Returns:
        Compact JWS string (header.payload.signature).
    """
    kind = "vc" if "VerifiableCredential" in credential_types(document) else "vp"
    header = _build_header(alg, kind, verification_method)
    payload = json.dumps(document, ensure_ascii=False).encode("utf-8")
    return jws.serialize_compact(header, payload, key, algorithms=[alg], registry=compact_registry(alg))


def compact_registry(alg: str) -> jws.JWSRegistry:
    """JWS registry that accepts the ``iss`` header carried by compact tokens."""
    return jws.JWSRegistry(header_registry=_JWT_HEADER_REGISTRY, algorithms=[alg])


STRATEGIES: dict[str, ProofStrategy] = {
    "jws": DetachedJwsStrategy(),
    "jwt": CompactJwtStrategy(),
}


# ---------------------------------------------------------------------------
# Proof chain
# ---------------------------------------------------------------------------


def select_proofs(proofs: list[dict], selector: str | list[str] | None) -> list[dict]:
    """Return the proofs named by ``selector``; every named id must exist.

    Raises:
        PreviousProofNotFoundError: If any requested id is not in ``proofs``.
    """
    if selector is None:
        return []
    wanted = [selector] if isinstance(selector, str) else list(selector)
    known = {p.get("id") for p in proofs if isinstance(p, dict)}
    missing = [proof_id for proof_id in wanted if proof_id not in known]
    if missing:
        raise PreviousProofNotFoundError(
            f"Previous proof not found: {', '.join(missing)}"
        )
    return [p for p in proofs if p.get("id") in wanted]


class ProofChainManager:
    """Produce a first proof or append one to an existing chain."""

    def __init__(self, strategies: dict[str, ProofStrategy] | None = None):
        self.strategies = strategies or STRATEGIES

    def sign(
        self,
        document: dict,
        version: str,
        signing_key: dict,
        verification_method: str,
        previous_proof: str | list[str] | None = None,
    ) -> dict | str:
        """Sign ``document`` without modifying it.

        Args:
            document: Unsigned or already signed VC/VP dict.
            version: Ontology version token; selects the proof format.
            signing_key: Private JWK (EC/P-256 or OKP/Ed25519).
            verification_method: DID URL placed in the proof / ``kid`` header.
            previous_proof: Id or ids of existing proofs the new proof covers.

        Returns:
            The signed document (dict) or, for a first Loire signature, a
            compact JWS string.

        Raises:
            UnsupportedVersionError, KeyLoadError, PreviousProofNotFoundError.
        """
        profile = get_profile(version)
        strategy = self.strategies[profile.proof_format]
        if not isinstance(document, dict):
            raise TypeError(f"Expected a credential object, got {type(document).__name__}")
        key, alg = import_signing_key(signing_key)

        if not document.get("proof"):
            logger.info("No existing proof, signing with %s", profile.proof_format)
            unsigned = copy.deepcopy(document)
            unsigned.pop("proof", None)
            return strategy.sign(unsigned, key, alg, verification_method)

        logger.info("Existing proof detected, adding a new proof to the chain")
        return self.extend_chain(
            document, strategy, key, alg, verification_method, previous_proof
        )

    def extend_chain(
        self,
        document: dict,
        strategy: ProofStrategy,
        key: ECKey | OKPKey,
        alg: str,
        verification_method: str,
        previous_proof: str | list[str] | None = None,
    ) -> dict:
        signed = copy.deepcopy(document)
        proofs = signed.pop("proof")
        if isinstance(proofs, dict):
            proofs = [proofs]

        matched = select_proofs(proofs, previous_proof)
        to_sign = dict(signed)
        if matched:
            to_sign["proof"] = matched
        new_proof = strategy.create_proof(to_sign, key, alg, verification_method)

        last = proofs[-1]
        if not last.get("id"):
            last["id"] = new_urn()
            logger.info("Assigned id to previous proof: %s", last["id"])

        new_proof = {"id": new_urn(), **new_proof, "previousProof": last["id"]}
        logger.info("New proof %s linked to %s", new_proof["id"], last["id"])

        signed["proof"] = [*proofs, new_proof]
        return signed


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_header(alg: str, kind: str, verification_method: str) -> dict[str, object]:
    """Build the JOSE protected header for a compact credential."""
    return {
        "alg": alg,
        "typ": f"{kind}+ld+json+jwt",
        "cty": f"{kind}+ld+json",
        "iss": verification_method.split("#")[0],
        "kid": verification_method,
    }


def _canonicalize(obj: dict) -> bytes:
    """Canonical JSON serialization used as the detached JWS payload."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode()


def _created() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
