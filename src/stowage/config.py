from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any


@dataclass(frozen=True)
class RetryPolicy:
    """
    Immutable retry settings shared by every storage surface.

    max_attempts:
        Number of retries after the initial try. 0 means "try once".

    initial_delay_s:
        Base delay before the first retry. Doubles for every further retry.

    max_delay_s:
        Hard ceiling on any single computed delay.

    enabled:
        When False the operation runs exactly once, whatever the failure.

    jitter_ratio:
        Upper bound of the random fraction added on top of each delay.
    """

    max_attempts: int = 3
    initial_delay_s: float = 1.0
    max_delay_s: float = 30.0
    enabled: bool = True
    jitter_ratio: float = 0.2

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0.")
        if self.initial_delay_s < 0:
            raise ValueError("initial_delay_s must be >= 0.")
        if self.max_delay_s < 0:
            raise ValueError("max_delay_s must be >= 0.")
        if self.jitter_ratio < 0:
            raise ValueError("jitter_ratio must be >= 0.")

    @classmethod
    def default(cls) -> "RetryPolicy":
        """3 retries, 1s initial delay, 30s ceiling."""
        return cls()

    @classmethod
    def none(cls) -> "RetryPolicy":
        """Retries disabled: every operation executes exactly once."""
        return cls(enabled=False)

    @classmethod
    def aggressive(cls) -> "RetryPolicy":
        """5 retries, 500ms initial delay, 10s ceiling."""
        return cls(max_attempts=5, initial_delay_s=0.5, max_delay_s=10.0)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RetryPolicy":
        """
        Build a policy from a plain mapping (parsed config file, env dict).

        A ``preset`` key selects the starting point ("default", "none",
        "aggressive"); remaining keys override individual fields.
        """
        values = dict(data)
        preset = str(values.pop("preset", "default")).lower()
        presets = {"default": cls.default, "none": cls.none, "aggressive": cls.aggressive}
        if preset not in presets:
            raise ValueError(f"Unknown retry preset: {preset!r}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown retry policy keys: {', '.join(unknown)}")

        base = presets[preset]()
        merged = {f.name: getattr(base, f.name) for f in fields(cls)}
        merged.update(values)
        return cls(
            max_attempts=int(merged["max_attempts"]),
            initial_delay_s=float(merged["initial_delay_s"]),
            max_delay_s=float(merged["max_delay_s"]),
            enabled=_coerce_bool(merged["enabled"]),
            jitter_ratio=float(merged["jitter_ratio"]),
        )


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"Invalid boolean value: {value!r}")
    return bool(value)


DEFAULT_POLICY = RetryPolicy.default()
NO_RETRY = RetryPolicy.none()
AGGRESSIVE_POLICY = RetryPolicy.aggressive()


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


@dataclass
class StorageOptions:
    """
    Connection settings shared by the storage surfaces.

    Authentication, in order of precedence:
      1. connection_string
      2. account_name + account_key
      3. account_name + sas_token

    retry_policy defaults to RetryPolicy.default(); use RetryPolicy.none()
    to disable automatic retries.
    """

    account_name: str | None = None
    account_key: str | None = None
    connection_string: str | None = None
    service_uri: str | None = None
    sas_token: str | None = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy.default)

    def validate(self) -> None:
        if not _blank(self.connection_string):
            return
        if _blank(self.account_name):
            raise ValueError("account_name is required when connection_string is not provided.")
        if _blank(self.account_key) and _blank(self.sas_token):
            raise ValueError(
                "Either account_key or sas_token must be provided when using "
                "account-based authentication."
            )

    @classmethod
    def from_connection_string(
        cls, connection_string: str, *, retry_policy: RetryPolicy | None = None
    ) -> "StorageOptions":
        if _blank(connection_string):
            raise ValueError("Connection string cannot be null or empty.")
        return cls(
            connection_string=connection_string,
            retry_policy=retry_policy or RetryPolicy.default(),
        )

    @classmethod
    def from_account_key(
        cls, account_name: str, account_key: str, *, retry_policy: RetryPolicy | None = None
    ) -> "StorageOptions":
        if _blank(account_name):
            raise ValueError("Account name cannot be null or empty.")
        if _blank(account_key):
            raise ValueError("Account key cannot be null or empty.")
        return cls(
            account_name=account_name,
            account_key=account_key,
            retry_policy=retry_policy or RetryPolicy.default(),
        )

    @classmethod
    def from_sas_token(
        cls, account_name: str, sas_token: str, *, retry_policy: RetryPolicy | None = None
    ) -> "StorageOptions":
        if _blank(account_name):
            raise ValueError("Account name cannot be null or empty.")
        if _blank(sas_token):
            raise ValueError("SAS token cannot be null or empty.")
        return cls(
            account_name=account_name,
            sas_token=sas_token,
            retry_policy=retry_policy or RetryPolicy.default(),
        )

    def endpoint(self, service: str) -> str:
        """Service endpoint for ``service`` ("blob", "queue", "table", "file")."""
        if not _blank(self.service_uri):
            return str(self.service_uri).rstrip("/")
        return f"https://{self.account_name}.{service}.core.windows.net"
