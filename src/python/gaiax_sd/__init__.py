"""gaiax_sd - Gaia-X self-description generation.

This package turns the published Gaia-X ontology into signed credentials:
- Ontology normalization for Tagus (SHACL) and Loire (LinkML)
- Credential and presentation composition per version profile
- Service-offering bundles with cross-shape identifiers
- Proof creation and proof-chain extension (detached JWS / compact JWT)
- Legal registration number lookup through the notary
- Key generation, key store and output sink

Usage:
    from gaiax_sd import OntologyNormalizer, ShapeComposer, ProofChainManager
    from gaiax_sd.service_offering import ServiceOfferingBundler
    from gaiax_sd.registration import RegistrationResolver
"""


# Use lazy imports to avoid RuntimeWarning when running modules directly
def __getattr__(name):
    """Lazy import to avoid import cycle when running modules directly."""
    if name in ("OntologyNormalizer", "ShapeSchema", "PropertyConstraint", "PENDING"):
        from gaiax_sd import ontology

        return getattr(ontology, name)
    elif name in ("ShapeComposer", "CompositionContext"):
        from gaiax_sd import composer

        return getattr(composer, name)
    elif name in ("ServiceOfferingBundler", "BundlePlan"):
        from gaiax_sd import service_offering

        return getattr(service_offering, name)
    elif name == "ProofChainManager":
        from gaiax_sd import signer

        return signer.ProofChainManager
    elif name == "RegistrationResolver":
        from gaiax_sd import registration

        return registration.RegistrationResolver
    elif name in ("KeyStore", "KeyPair", "OutputSink"):
        from gaiax_sd import keystore

        return getattr(keystore, name)
    elif name in ("Settings", "RetryPolicy"):
        from gaiax_sd import config

        return getattr(config, name)
    elif name in ("TAGUS", "LOIRE"):
        from gaiax_sd import versions

        return getattr(versions, name)
    raise AttributeError(f"module 'gaiax_sd' has no attribute {name!r}")


__all__ = [
    # Ontology
    "OntologyNormalizer",
    "ShapeSchema",
    "PropertyConstraint",
    "PENDING",
    # Composition
    "ShapeComposer",
    "CompositionContext",
    "ServiceOfferingBundler",
    "BundlePlan",
    # Signing
    "ProofChainManager",
    # Registration
    "RegistrationResolver",
    # Persistence
    "KeyStore",
    "KeyPair",
    "OutputSink",
    # Configuration
    "Settings",
    "RetryPolicy",
    "TAGUS",
    "LOIRE",
]
