"""Ontology version profiles.

Each supported ontology version maps to exactly one profile. Everything that
differs between the Tagus (SHACL) and Loire (LinkML) generations - source
URLs, JSON-LD contexts, the issuance date field and the proof format - is
read from here instead of being branched on elsewhere.
"""

from dataclasses import dataclass

from gaiax_sd.errors import UnsupportedVersionError

TAGUS = "22.10 (Tagus)"
LOIRE = "24.06 (Loire)"

# Short names accepted on the command line
VERSION_ALIASES = {
    "tagus": TAGUS,
    "22.10": TAGUS,
    TAGUS: TAGUS,
    "loire": LOIRE,
    "24.06": LOIRE,
    LOIRE: LOIRE,
}


@dataclass(frozen=True)
class VersionProfile:
    """Static policy for one ontology version."""

    token: str
    dialect: str  # "shacl" | "linkml"
    ontology_url: str
    credential_context: tuple[str, ...]
    presentation_context: tuple[str, ...]
    date_field: str
    proof_format: str  # "jws" (detached proof object) | "jwt" (compact token)
    registration_url: str
    implemented_shapes_url: str | None = None
    enveloped_media_type: str | None = None


PROFILES: dict[str, VersionProfile] = {
    TAGUS: VersionProfile(
        token=TAGUS,
        dialect="shacl",
        ontology_url="https://registry.lab.gaia-x.eu/v1-staging/api/trusted-shape-registry/v1/shapes",
        implemented_shapes_url="https://registry.lab.gaia-x.eu/v1-staging/api/trusted-shape-registry/v1/shapes/implemented",
        credential_context=(
            "https://www.w3.org/2018/credentials/v1",
            "https://registry.lab.gaia-x.eu/development/api/trusted-shape-registry/v1/shapes/jsonld/trustframework#",
        ),
        presentation_context=("https://www.w3.org/2018/credentials/v1",),
        date_field="issuanceDate",
        proof_format="jws",
        registration_url="https://registrationnumber.notary.lab.gaia-x.eu/v1/registrationNumber",
    ),
    LOIRE: VersionProfile(
        token=LOIRE,
        dialect="linkml",
        ontology_url="https://registry.lab.gaia-x.eu/main/linkml/2406/types.yaml",
        credential_context=(
            "https://www.w3.org/ns/credentials/v2",
            "https://www.w3.org/ns/credentials/examples/v2",
        ),
        presentation_context=(
            "https://www.w3.org/ns/credentials/v2",
            "https://www.w3.org/ns/credentials/examples/v2",
        ),
        date_field="validFrom",
        proof_format="jwt",
        registration_url="https://registrationnumber.notary.lab.gaia-x.eu/main/registration-numbers",
        enveloped_media_type="application/vc+ld+json+jwt",
    ),
}


def get_profile(version: str) -> VersionProfile:
    """Return the profile for ``version`` or raise UnsupportedVersionError."""
    try:
        return PROFILES[version]
    except (KeyError, TypeError):
        raise UnsupportedVersionError(version) from None


def parse_version(value: str) -> str:
    """Resolve a command-line alias (``tagus``, ``24.06``...) to a version token."""
    token = VERSION_ALIASES.get(value) or VERSION_ALIASES.get(value.strip().lower())
    if token is None:
        raise UnsupportedVersionError(value)
    return token
