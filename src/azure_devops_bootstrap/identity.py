# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

from az_shared.az_cmd import AzCmd, execute_json
from az_shared.errors import FatalError
from az_shared.logs import log

from .models import AppIdentity


def create_app_registration(display_name: str) -> dict:
    """Create an Entra ID app registration."""
    log.info(f"Creating app registration {display_name}")
    app = execute_json(AzCmd("ad app", "create").param("--display-name", display_name))
    if not app or not app.get("appId"):
        raise FatalError(f"App registration '{display_name}' was not returned by 'az ad app create'")
    return app


def create_service_principal(client_id: str) -> dict:
    """Create the service principal backing an app registration."""
    log.info(f"Creating service principal for app {client_id}")
    sp = execute_json(AzCmd("ad sp", "create").param("--id", client_id))
    if not sp or not sp.get("id"):
        raise FatalError(f"Service principal for app '{client_id}' was not returned by 'az ad sp create'")
    return sp


def create_app_identity(display_name: str) -> AppIdentity:
    """Create an app registration and its service principal. Both must succeed."""
    app = create_app_registration(display_name)
    sp = create_service_principal(app["appId"])
    identity = AppIdentity(
        display_name=display_name,
        client_id=app["appId"],
        application_object_id=app["id"],
        service_principal_id=sp["id"],
    )
    log.debug(f"App identity: {identity}")
    return identity
