# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

import json
from time import sleep

from az_shared.az_cmd import POLICY_ERROR, REFRESH_TOKEN_EXPIRED_ERROR, AzCmd, execute_json, run
from az_shared.errors import (
    ContainerCreationRetriesExhaustedError,
    FatalError,
    RefreshTokenError,
    ResourceConflictError,
    StorageAccountCreationError,
)
from az_shared.logs import log

from .configuration import Configuration
from .constants import (
    CONTAINER_CREATE_MAX_ATTEMPTS,
    CONTAINER_CREATE_RETRY_DELAY,
    DEFAULT_REGION,
    STORAGE_DEFAULT_NETWORK_ACTION,
    STORAGE_KIND,
    STORAGE_MIN_TLS_VERSION,
    STORAGE_SKU,
)
from .models import JsonDict, Principal, ResourceGroup, StateStore
from .results import Failure, FailureKind, Result, Success
from .role_setup import grant_caller_storage_access

CONTAINER_EXISTS_ERROR = "ContainerAlreadyExists"

# =============================================================================
# Resource Group
# =============================================================================


def create_resource_group(name: str, region: str = DEFAULT_REGION) -> ResourceGroup:
    """Create the resource group that holds the Terraform state storage account"""
    log.info(f"Creating resource group {name} in {region}")
    group = execute_json(AzCmd("group", "create").param("--name", name).param("--location", region)) or {}
    return ResourceGroup(name=name, region=region, id=group.get("id", ""))


# =============================================================================
# Storage Account
# =============================================================================


def ensure_storage_account_name_available(account_name: str) -> None:
    """Storage account names are global, so check before creating anything."""
    log.info(f"Checking storage account name {account_name} is available")
    availability = execute_json(AzCmd("storage", "account check-name").param("--name", account_name)) or {}
    if not availability.get("nameAvailable"):
        raise ResourceConflictError("Storage account", account_name, availability.get("message") or "")


def create_storage_account(account_name: str, resource_group: str, region: str) -> JsonDict:
    """Create the storage account with identity-only, HTTPS-only access"""
    log.info(f"Creating storage account {account_name}")
    try:
        account = execute_json(
            AzCmd("storage", "account create")
            .param("--name", account_name)
            .param("--resource-group", resource_group)
            .param("--location", region)
            .param("--sku", STORAGE_SKU)
            .param("--kind", STORAGE_KIND)
            .param("--allow-blob-public-access", "false")
            .param("--allow-shared-key-access", "false")
            .param("--https-only", "true")
            .param("--min-tls-version", STORAGE_MIN_TLS_VERSION)
            .param("--default-action", STORAGE_DEFAULT_NETWORK_ACTION)
        )
    except RuntimeError as e:
        raise StorageAccountCreationError(f"Failed to create storage account '{account_name}': {e}") from e
    log.warning(
        f"Storage account {account_name} accepts traffic from all networks so that hosted pipeline agents can reach it"
    )
    return account or {}


def enable_blob_versioning(account_name: str, resource_group: str) -> None:
    """Keep previous versions of state blobs. Not required for the bootstrap to succeed."""
    result = run(
        AzCmd("storage", "account blob-service-properties update")
        .param("--account-name", account_name)
        .param("--resource-group", resource_group)
        .param("--enable-versioning", "true")
    )
    if not result.success:
        log.warning(f"Could not enable blob versioning on {account_name}")
        log.debug(result.stderr)


# =============================================================================
# Blob Container
# =============================================================================


def classify_container_failure(stderr: str) -> FailureKind:
    if CONTAINER_EXISTS_ERROR in stderr:
        return FailureKind.CONFLICT
    if POLICY_ERROR in stderr or REFRESH_TOKEN_EXPIRED_ERROR in stderr:
        return FailureKind.FATAL
    # Everything else looks the same as a data plane role that has not propagated yet.
    return FailureKind.TRANSIENT


def try_create_container(account_name: str, container_name: str) -> Result[JsonDict]:
    """Make a single attempt at creating a private blob container using Entra ID auth."""
    result = run(
        AzCmd("storage", "container create")
        .param("--name", container_name)
        .param("--account-name", account_name)
        .param("--auth-mode", "login")
        .param("--public-access", "off")
        .flag("--fail-on-exist")
    )
    if result.success:
        return Success(json.loads(result.stdout) if result.stdout.strip() else {})
    return Failure(classify_container_failure(result.stderr), result.stderr.strip())


def create_container_with_retry(
    account_name: str,
    container_name: str,
    max_attempts: int = CONTAINER_CREATE_MAX_ATTEMPTS,
    retry_delay: float = CONTAINER_CREATE_RETRY_DELAY,
) -> Result[JsonDict]:
    """Create the container, retrying transient failures while role assignments propagate.

    Returns the first success or non-retryable failure, or the last transient failure once
    max_attempts is spent. Never sleeps after the final attempt.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    outcome: Result[JsonDict] = Failure(FailureKind.FATAL, "no attempt made")
    for attempt in range(1, max_attempts + 1):
        outcome = try_create_container(account_name, container_name)
        if isinstance(outcome, Success) or not outcome.retryable:
            return outcome

        log.debug(f"Attempt {attempt} to create container {container_name} failed: {outcome.message}")
        if attempt < max_attempts:
            log.info(
                f"Container {container_name} not created yet (attempt {attempt}/{max_attempts}), "
                f"role assignment may still be propagating. Retrying in {retry_delay} seconds..."
            )
            sleep(retry_delay)

    return outcome


def create_blob_container(
    account_name: str,
    container_name: str,
    max_attempts: int = CONTAINER_CREATE_MAX_ATTEMPTS,
    retry_delay: float = CONTAINER_CREATE_RETRY_DELAY,
) -> JsonDict:
    """Create the Terraform state container, raising a distinct error for each way it can fail"""
    log.info(f"Creating blob container {container_name} in {account_name}")
    outcome = create_container_with_retry(account_name, container_name, max_attempts, retry_delay)
    if isinstance(outcome, Success):
        log.info(f"Blob container {container_name} created")
        return outcome.value
    if outcome.kind is FailureKind.CONFLICT:
        raise ResourceConflictError("Blob container", container_name, "container already exists")
    if outcome.kind is FailureKind.TRANSIENT:
        raise ContainerCreationRetriesExhaustedError(container_name, max_attempts, outcome.message)
    if REFRESH_TOKEN_EXPIRED_ERROR in outcome.message:
        raise RefreshTokenError(outcome.message)
    raise FatalError(f"Failed to create blob container '{container_name}': {outcome.message}")


# =============================================================================
# Terraform state store
# =============================================================================


def create_state_store(
    config: Configuration,
    account_name: str,
    resource_group: ResourceGroup,
    container_name: str,
    caller: Principal,
) -> StateStore:
    """Create the storage account and container that hold Terraform state"""
    ensure_storage_account_name_available(account_name)
    account = create_storage_account(account_name, resource_group.name, resource_group.region)

    log.info(f"Granting the signed-in {caller.kind.value} data access to {account_name}")
    grant_caller_storage_access(config, caller, resource_group.name, account_name)

    create_blob_container(account_name, container_name)
    enable_blob_versioning(account_name, resource_group.name)

    return StateStore(account_name=account_name, container_name=container_name, account=account)
