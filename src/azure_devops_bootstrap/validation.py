# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

from az_shared.az_cmd import AzCmd, execute_json, set_subscription
from az_shared.errors import AzCliNotAuthenticatedError, TenantMismatchError
from az_shared.logs import log

from .configuration import Configuration
from .models import Principal
from .role_setup import get_signed_in_principal


def validate_az_cli() -> dict:
    """Ensure Azure CLI is installed and user is authenticated."""
    try:
        account = execute_json(AzCmd("account", "show"))
    except Exception as e:
        raise AzCliNotAuthenticatedError(
            "Azure CLI is not authenticated. Please run 'az login' first and retry"
        ) from e
    if not account:
        raise AzCliNotAuthenticatedError()
    log.debug("Azure CLI authentication verified")
    return account


def validate_tenant(config: Configuration, account: dict) -> None:
    """The CLI login must belong to the tenant the app registration is created in."""
    tenant_id = account.get("tenantId", "")
    if tenant_id.casefold() != config.tenant_id.casefold():
        raise TenantMismatchError(config.tenant_id, tenant_id)


def run_preflight_checks(config: Configuration) -> Principal:
    """Verify the CLI login and select the subscription. Returns the signed-in caller."""
    account = validate_az_cli()
    validate_tenant(config, account)
    caller = get_signed_in_principal(account)
    set_subscription(config.subscription_id)
    log.info(f"Using subscription {config.subscription_name} ({config.subscription_id})")
    log.info(f"Signed in as {caller.kind.value} {caller.id}")
    return caller
