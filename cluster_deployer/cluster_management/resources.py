import dataclasses
import datetime
import re
import typing as tp


class PoolKinds:
    """Kinds of resources that can be acquired from the pool."""

    GCE_PROJECT: tp.Final[str] = "gce-project"


# Prefix of resource names, names need to start with a letter
NAME_PREFIX = "kt2-"
# The first 13 characters of a UUID (e.g. `09a2565a-7ac6`) depend on timestamp and have the
# best avalanche effect compared to the other characters.
MAX_RESOURCE_NAME_PREFIX_LEN = 13
# https://cloud.google.com/compute/docs/naming-resources
MAX_GCE_NAME_LEN = 63
GCE_NAME_RE = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")

_SANITIZE_RE = re.compile("[^a-z0-9-]+")


@dataclasses.dataclass(frozen=True, order=True)
class Lease:
    """A claim on a pooled resource, granted by the resource broker."""

    pool_kind: str
    name: str
    owner: str
    expires_at: datetime.datetime | None = None

    @classmethod
    def from_response(cls, data: dict[str, tp.Any], *, owner: str) -> "Lease":
        """Create lease from a resource record returned by the broker."""
        expires_at = None
        expiration_date = data.get("expiration-date")
        if expiration_date:
            expires_at = datetime.datetime.fromisoformat(expiration_date.replace("Z", "+00:00"))
        return cls(
            pool_kind=data["type"],
            name=data["name"],
            owner=data.get("owner") or owner,
            expires_at=expires_at,
        )


def pseudo_unique_substring(run_id: str) -> str:
    """Return a substring of run ID that can be used in length constrained resource names."""
    if len(run_id) <= MAX_RESOURCE_NAME_PREFIX_LEN:
        return run_id
    return run_id[:MAX_RESOURCE_NAME_PREFIX_LEN]


def sanitize_res_name(s: str) -> str:
    """Sanitize resource name to the format accepted by GCE."""
    sanitized = _SANITIZE_RE.sub("-", s.lower()).rstrip("-")[:MAX_GCE_NAME_LEN]
    return sanitized.rstrip("-")


def is_valid_res_name(s: str) -> bool:
    return len(s) <= MAX_GCE_NAME_LEN and bool(GCE_NAME_RE.match(s))


@dataclasses.dataclass(frozen=True, order=True)
class RunIdentity:
    """Names of cluster resources, derived from ID of the run."""

    run_id: str
    instance_prefix: str
    network: str

    @classmethod
    def from_run_id(cls, run_id: str) -> "RunIdentity":
        if not run_id:
            msg = "Run ID cannot be empty."
            raise ValueError(msg)
        name = sanitize_res_name(f"{NAME_PREFIX}{pseudo_unique_substring(run_id)}")
        if not is_valid_res_name(name):
            msg = f"Cannot derive valid resource name from run ID '{run_id}'."
            raise ValueError(msg)
        return cls(run_id=run_id, instance_prefix=name, network=name)
