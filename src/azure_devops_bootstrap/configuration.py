# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

"""Connection settings gate and per-run parameters."""

import os
import re
import sys
from base64 import b64encode
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from getpass import getpass
from typing import Optional

from az_shared.errors import ConfigurationError, InputParamValidationError

from .constants import DEFAULT_CONTAINER_NAME, DEFAULT_REGION

# Configuration field -> environment variable
SETTINGS = {
    "tenant_id": "AZURE_TENANT_ID",
    "subscription_id": "AZURE_SUBSCRIPTION_ID",
    "subscription_name": "AZURE_SUBSCRIPTION_NAME",
    "org_id": "AZDO_ORG_ID",
    "org_name": "AZDO_ORG_NAME",
    "project_id": "AZDO_PROJECT_ID",
    "project_name": "AZDO_PROJECT_NAME",
    "access_token": "AZDO_PERSONAL_ACCESS_TOKEN",
}

STORAGE_ACCOUNT_NAME_PATTERN = re.compile(r"^[a-z0-9]{3,24}$")
CONTAINER_NAME_PATTERN = re.compile(r"^(?!.*--)[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$")


@dataclass(frozen=True)
class Configuration:
    """Tenant, subscription and Azure DevOps connection settings. Immutable once loaded."""

    tenant_id: str
    subscription_id: str
    subscription_name: str
    org_id: str
    org_name: str
    project_id: str
    project_name: str
    access_token: str = field(repr=False)

    @property
    def subscription_scope(self) -> str:
        return f"/subscriptions/{self.subscription_id}"

    @property
    def authorization_header(self) -> str:
        """Basic auth with an empty user name and the access token as password."""
        credentials = b64encode(f":{self.access_token}".encode("utf-8")).decode("ascii")
        return f"Basic {credentials}"


def prompt_for_access_token() -> Optional[str]:
    """Ask for the Azure DevOps access token when running in a terminal."""
    if not sys.stdin.isatty():
        return None
    return getpass(f"{SETTINGS['access_token']} is not set. Azure DevOps personal access token: ")


def load_configuration(
    environ: Mapping[str, str] = os.environ,
    prompt: Optional[Callable[[], Optional[str]]] = prompt_for_access_token,
) -> Configuration:
    """Read every required setting, reporting all missing ones at once."""
    values = {name: (environ.get(variable) or "").strip() for name, variable in SETTINGS.items()}

    missing = [variable for name, variable in SETTINGS.items() if not values[name]]
    # only prompt when the token is the one thing left to supply
    if missing == [SETTINGS["access_token"]] and prompt:
        values["access_token"] = (prompt() or "").strip()
        missing = [variable for name, variable in SETTINGS.items() if not values[name]]

    if missing:
        raise ConfigurationError(missing)

    return Configuration(**values)


@dataclass(frozen=True)
class BootstrapParameters:
    """Names of the resources this run creates."""

    resource_group: str
    storage_account: str
    app_display_name: str
    service_connection_name: str
    region: str = DEFAULT_REGION
    container_name: str = DEFAULT_CONTAINER_NAME

    def __post_init__(self):
        errors = []
        if not self.resource_group.strip():
            errors.append("Resource group name must not be empty")
        if not STORAGE_ACCOUNT_NAME_PATTERN.match(self.storage_account):
            errors.append(
                f"Storage account name '{self.storage_account}' must be 3-24 lowercase letters and numbers"
            )
        if not CONTAINER_NAME_PATTERN.match(self.container_name):
            errors.append(
                f"Container name '{self.container_name}' must be 3-63 lowercase letters, numbers and single hyphens"
            )
        if not self.app_display_name.strip():
            errors.append("App registration display name must not be empty")
        if not self.service_connection_name.strip():
            errors.append("Service connection name must not be empty")
        if errors:
            raise InputParamValidationError("\n".join(errors))
