# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Union

JsonAtom = Union[str, int, bool, None]
JsonDict = dict[str, "Json"]
JsonList = list["Json"]
Json = Union[JsonDict, JsonList, JsonAtom]


class PrincipalKind(str, Enum):
    USER = "User"
    SERVICE_PRINCIPAL = "ServicePrincipal"


@dataclass(frozen=True)
class Principal:
    """An Entra ID object that roles can be assigned to."""

    id: str
    kind: PrincipalKind


@dataclass(frozen=True)
class AppIdentity:
    """An Entra ID app registration and its service principal."""

    display_name: str
    client_id: str
    application_object_id: str
    service_principal_id: str

    @property
    def application_id(self) -> str:
        return self.client_id


@dataclass(frozen=True)
class ResourceGroup:
    """An Azure resource group."""

    name: str
    region: str
    id: str = ""


@dataclass(frozen=True)
class StateStore:
    """The storage account and container holding Terraform state."""

    account_name: str
    container_name: str
    account: JsonDict = field(default_factory=dict)


@dataclass(frozen=True)
class RoleGrant:
    """A role assignment of (principal, role, scope)."""

    principal_id: str
    principal_kind: PrincipalKind
    role: str
    scope: str


@dataclass(frozen=True)
class FederationTrust:
    """The (subject, issuer, audience) Azure DevOps presents when exchanging its token."""

    subject: str
    issuer: str
    audience: str


@dataclass(frozen=True)
class ServiceConnection:
    """An Azure DevOps AzureRM service connection."""

    id: str
    name: str
    subscription_id: str
    subscription_name: str
    authorization_scheme: str
    project_id: str
    trust: FederationTrust


@dataclass(frozen=True)
class FederatedCredential:
    """A federated identity credential registered on an app registration."""

    id: str
    name: str
    application_id: str
    subject: str
    issuer: str
    audiences: list[str]
    description: str


@dataclass(frozen=True)
class BootstrapSummary:
    """Everything the bootstrap created, for the operator to review."""

    app_identity: AppIdentity
    resource_group: ResourceGroup
    state_store: StateStore
    role_grants: list[RoleGrant]
    service_connection: ServiceConnection
    federated_credential: FederatedCredential

    def to_dict(self) -> dict[str, Any]:
        summary = asdict(self)
        # the raw account payload is noisy; keep what an operator looks for
        account = self.state_store.account
        summary["state_store"]["account"] = {
            key: account[key] for key in ("id", "location", "primaryEndpoints") if key in account
        }
        return summary
