"""Domain records built from Azure CLI JSON output."""

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class AzureAccount:
    """The signed-in account and its active subscription (``az account show``)."""

    subscription_id: str
    subscription_name: str
    tenant_id: str
    user_name: str | None = None
    user_type: str | None = None
    environment_name: str | None = None


@dataclass(frozen=True)
class AccountStatus:
    """Whether someone is signed in, without raising when nobody is."""

    signed_in: bool
    account: AzureAccount | None = None
    error: str | None = None


@dataclass(frozen=True)
class AzureSubscription:
    id: str
    name: str
    tenant_id: str
    state: str = ""
    is_default: bool = False


@dataclass(frozen=True)
class AzureResourceGroup:
    name: str
    location: str = ""


@dataclass(frozen=True)
class AzureResource:
    """A resource in a group, limited to the app types the panel manages."""

    id: str
    name: str
    type: str
    resource_group: str
    location: str = ""
    kind: str | None = None


class AppRuntimeState(str, Enum):
    """Coarse running state of a web app or container app."""

    UNKNOWN = "unknown"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class AppRuntimeInfo:
    state: AppRuntimeState
    host_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class AppIdentityInfo:
    """How an app authenticates: EasyAuth client, managed identity, or neither.

    Attributes:
        tenant_id: Tenant from the auth issuer, the managed identity, or the account
        client_id: EasyAuth / Entra app registration client id
        managed_identity_principal_id: System-assigned identity principal
        source: Human-readable description of where the identity came from
        raw: The individual values that were found, keyed by origin
    """

    tenant_id: str
    client_id: str | None
    managed_identity_principal_id: str | None
    source: str
    raw: dict[str, str] = field(default_factory=dict)
