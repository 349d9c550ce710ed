#!/usr/bin/env python3
# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.


import argparse
import json
import sys

from az_shared.errors import UserActionRequiredError
from az_shared.logs import LOG_LEVELS, configure_logging, log, log_header

from .configuration import SETTINGS, BootstrapParameters, Configuration, load_configuration
from .constants import DEFAULT_CONTAINER_NAME, DEFAULT_REGION
from .identity import create_app_identity
from .models import BootstrapSummary
from .resource_setup import create_resource_group, create_state_store
from .role_setup import grant_service_principal_access
from .service_connection import bind_devops_trust
from .validation import run_preflight_checks


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Bootstrap Terraform state storage and an Azure DevOps service connection for a subscription",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Connection settings are read from the environment: " + ", ".join(SETTINGS.values()),
    )

    # Required params
    parser.add_argument(
        "--resource-group", type=str, required=True, help="Resource group to create for Terraform state (required)"
    )
    parser.add_argument(
        "--storage-account",
        type=str,
        required=True,
        help="Globally unique storage account name, 3-24 lowercase letters and numbers (required)",
    )
    parser.add_argument(
        "--app-name", type=str, required=True, help="Display name of the app registration to create (required)"
    )
    parser.add_argument(
        "--service-connection",
        type=str,
        required=True,
        help="Name of the Azure DevOps service connection to create (required)",
    )

    # Optional parameters
    parser.add_argument(
        "--region", type=str, default=DEFAULT_REGION, help=f"Azure region for new resources (default: {DEFAULT_REGION})"
    )
    parser.add_argument(
        "--container",
        type=str,
        default=DEFAULT_CONTAINER_NAME,
        help=f"Blob container for Terraform state (default: {DEFAULT_CONTAINER_NAME})",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=LOG_LEVELS,
        help="Set the log level (default: INFO)",
    )

    return parser.parse_args(argv)


def bootstrap(config: Configuration, parameters: BootstrapParameters) -> BootstrapSummary:
    """Run every provisioning step in order. The first failure stops the run; nothing is rolled back."""
    created: list[str] = []
    step = "preflight"
    try:
        log_header("STEP 1: Validating Azure CLI login...")
        caller = run_preflight_checks(config)

        step = "app registration"
        log_header("STEP 2: Creating app registration and service principal...")
        app_identity = create_app_identity(parameters.app_display_name)
        created.append(f"app registration {app_identity.display_name} ({app_identity.client_id})")

        step = "resource group"
        log_header("STEP 3: Creating resource group...")
        resource_group = create_resource_group(parameters.resource_group, parameters.region)
        created.append(f"resource group {resource_group.name}")

        step = "state storage"
        log_header("STEP 4: Creating Terraform state storage...")
        state_store = create_state_store(
            config, parameters.storage_account, resource_group, parameters.container_name, caller
        )
        created.append(f"storage account {state_store.account_name} with container {state_store.container_name}")

        step = "role assignments"
        log_header("STEP 5: Granting the service principal access...")
        role_grants = grant_service_principal_access(config, app_identity, resource_group, state_store)
        created.append(f"{len(role_grants)} role assignments")

        step = "service connection"
        log_header("STEP 6: Creating Azure DevOps service connection and federated credential...")
        service_connection, federated_credential = bind_devops_trust(
            config, app_identity, parameters.service_connection_name
        )
    except Exception as e:
        log.error(f"Failed during {step}: {e}")
        if created:
            log.error("These resources were already created and are left in place:")
            for resource in created:
                log.error(f"  - {resource}")
        raise

    log_header("Success! Bootstrap completed")
    return BootstrapSummary(
        app_identity=app_identity,
        resource_group=resource_group,
        state_store=state_store,
        role_grants=role_grants,
        service_connection=service_connection,
        federated_credential=federated_credential,
    )


def main(argv=None):
    """Entry point: gate on configuration, then bootstrap and print what was created."""
    args = parse_arguments(argv)
    configure_logging(args.log_level)

    try:
        config = load_configuration()
        parameters = BootstrapParameters(
            resource_group=args.resource_group,
            storage_account=args.storage_account,
            app_display_name=args.app_name,
            service_connection_name=args.service_connection,
            region=args.region,
            container_name=args.container,
        )
        summary = bootstrap(config, parameters)
    except UserActionRequiredError as e:
        print(f"\n{e.user_action_message}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"\nBootstrap failed: {e}", file=sys.stderr)
        print("Check the Azure CLI output above for more details.", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(summary.to_dict(), indent=2))


if __name__ == "__main__":
    main()
