"""Runtime settings with environment overrides.

Configuration sources (in order of precedence):
    1. Explicit keyword arguments / ``dataclasses.replace``
    2. Environment variables (GXSD_*)
    3. Default values
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_KEY_ID = "did:web:dataspace4health.local#key-0"

ENV_PREFIX = "GXSD_"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for the notary POST.

    Attributes:
        max_attempts: Attempts before giving up. 0 means no attempt limit,
            which is only accepted together with a deadline.
        delay: Seconds to wait between attempts.
        deadline: Overall budget in seconds, or None.
    """

    max_attempts: int = 20
    delay: float = 15.0
    deadline: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.delay < 0:
            raise ValueError("delay must be >= 0")
        if self.max_attempts == 0 and self.deadline is None:
            raise ValueError("an unbounded attempt count requires a deadline")


@dataclass(frozen=True)
class Settings:
    """Settings shared by the normalizer, resolver, key store and CLI."""

    request_timeout: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    key_dir: Path = Path("output/keys")
    output_dir: Path = Path("output")
    default_verification_method: str = DEFAULT_KEY_ID
    issuer: str | None = None

    @property
    def default_issuer(self) -> str:
        """Issuer DID: explicit value, else the DID of the verification method."""
        if self.issuer:
            return self.issuer
        return self.default_verification_method.split("#")[0]

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build settings from GXSD_* environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()

        def get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        deadline = get("RETRY_DEADLINE")
        retry = RetryPolicy(
            max_attempts=int(get("RETRY_MAX_ATTEMPTS") or defaults.retry.max_attempts),
            delay=float(get("RETRY_DELAY") or defaults.retry.delay),
            deadline=float(deadline) if deadline is not None else None,
        )
        return cls(
            request_timeout=float(get("REQUEST_TIMEOUT") or defaults.request_timeout),
            retry=retry,
            key_dir=Path(get("KEY_DIR") or defaults.key_dir),
            output_dir=Path(get("OUTPUT_DIR") or defaults.output_dir),
            default_verification_method=get("VERIFICATION_METHOD")
            or defaults.default_verification_method,
            issuer=get("ISSUER"),
        )
