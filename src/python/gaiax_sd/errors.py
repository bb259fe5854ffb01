"""Exception taxonomy for the self-description pipeline.

Every error here is fatal to the generation request that raised it and is
propagated to the caller unchanged.
"""


class SelfDescriptionError(Exception):
    """Base class for all pipeline errors."""


class UnsupportedVersionError(SelfDescriptionError, ValueError):
    """Raised for an ontology version token outside the supported pair."""

    def __init__(self, version: str):
        super().__init__(f"Unsupported ontology version: {version!r}")
        self.version = version


class UnknownTypeError(SelfDescriptionError, KeyError):
    """Raised when a credential subject type is absent from the ontology."""

    def __init__(self, type_name: str, version: str):
        super().__init__(type_name)
        self.type_name = type_name
        self.version = version

    def __str__(self) -> str:
        return f"Type {self.type_name!r} is not defined for ontology version {self.version!r}"


class OntologyFetchError(SelfDescriptionError):
    """Raised when the remote ontology cannot be fetched or parsed."""


class MissingDependencyIdError(SelfDescriptionError):
    """Raised when a shape needs an identifier that was not generated yet."""


class PreviousProofNotFoundError(SelfDescriptionError):
    """Raised when a previous-proof selector names an id not in the chain."""


class KeyLoadError(SelfDescriptionError):
    """Raised when signing key material cannot be loaded."""


class RegistrationLookupError(SelfDescriptionError):
    """Raised when the registration notary does not return an assertion."""


class FieldValidationError(SelfDescriptionError, ValueError):
    """Raised when a collected property value fails its field rule."""

    def __init__(self, name: str, message: str):
        super().__init__(f"{name}: {message}")
        self.name = name


class TermsSynthesisWarning(UserWarning):
    """Emitted when a bundle has no terms reference to synthesize from."""
