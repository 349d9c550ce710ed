# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

from az_shared.az_cmd import AzCmd, execute
from az_shared.errors import ManagedIdentityLoginError
from az_shared.logs import log

from .configuration import Configuration
from .constants import CONTRIBUTOR, STORAGE_BLOB_DATA_CONTRIBUTOR
from .models import AppIdentity, Principal, PrincipalKind, ResourceGroup, RoleGrant, StateStore

# Names az reports for managed identity logins instead of an app ID
MANAGED_IDENTITY_NAMES = {"systemAssignedIdentity", "userAssignedIdentity"}

# =============================================================================
# Scopes
# =============================================================================


def resource_group_scope(subscription_scope: str, resource_group: str) -> str:
    return f"{subscription_scope}/resourceGroups/{resource_group}"


def storage_account_scope(subscription_scope: str, resource_group: str, account_name: str) -> str:
    rg_scope = resource_group_scope(subscription_scope, resource_group)
    return f"{rg_scope}/providers/Microsoft.Storage/storageAccounts/{account_name}"


def container_scope(subscription_scope: str, resource_group: str, account_name: str, container_name: str) -> str:
    account_scope = storage_account_scope(subscription_scope, resource_group, account_name)
    return f"{account_scope}/blobServices/default/containers/{container_name}"


# =============================================================================
# Principals
# =============================================================================


def get_signed_in_principal(account: dict) -> Principal:
    """Resolve whoever the Azure CLI is logged in as, given the output of 'az account show'."""
    user = account.get("user") or {}
    if user.get("type") == "servicePrincipal":
        if user.get("name") in MANAGED_IDENTITY_NAMES:
            raise ManagedIdentityLoginError(user["name"])
        log.debug(f"Azure CLI is logged in as service principal {user.get('name')}")
        object_id = execute(
            AzCmd("ad sp", "show").param("--id", user["name"]).param("--query", "id").param("--output", "tsv")
        )
        return Principal(object_id.strip(), PrincipalKind.SERVICE_PRINCIPAL)

    object_id = execute(AzCmd("ad signed-in-user", "show").param("--query", "id").param("--output", "tsv"))
    return Principal(object_id.strip(), PrincipalKind.USER)


# =============================================================================
# Role assignments
# =============================================================================


def grant_role(principal_id: str, principal_kind: PrincipalKind, role: str, scope: str) -> RoleGrant:
    """Assign a role to a principal at a given scope."""
    log.info(f"Assigning role '{role}' to {principal_kind.value} {principal_id}")
    log.debug(f"Role assignment scope: {scope}")
    execute(
        AzCmd("role", "assignment create")
        .param("--assignee-object-id", principal_id)
        .param("--assignee-principal-type", principal_kind.value)
        .param("--role", role)
        .param("--scope", scope)
    )
    return RoleGrant(principal_id, principal_kind, role, scope)


def grant_caller_storage_access(
    config: Configuration, caller: Principal, resource_group: str, account_name: str
) -> RoleGrant:
    """Give the signed-in caller data plane access to the storage account.

    Owner or Contributor on the subscription only covers the control plane. Creating a
    container with '--auth-mode login' needs a blob data role as well.
    """
    return grant_role(
        caller.id,
        caller.kind,
        STORAGE_BLOB_DATA_CONTRIBUTOR,
        storage_account_scope(config.subscription_scope, resource_group, account_name),
    )


def grant_service_principal_access(
    config: Configuration, app_identity: AppIdentity, resource_group: ResourceGroup, state_store: StateStore
) -> list[RoleGrant]:
    """Let the service principal read and write state and manage the resource group."""
    return [
        grant_role(
            app_identity.service_principal_id,
            PrincipalKind.SERVICE_PRINCIPAL,
            STORAGE_BLOB_DATA_CONTRIBUTOR,
            container_scope(
                config.subscription_scope, resource_group.name, state_store.account_name, state_store.container_name
            ),
        ),
        grant_role(
            app_identity.service_principal_id,
            PrincipalKind.SERVICE_PRINCIPAL,
            CONTRIBUTOR,
            resource_group_scope(config.subscription_scope, resource_group.name),
        ),
    ]
