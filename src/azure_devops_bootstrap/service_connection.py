# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

"""Workload identity federation between Azure DevOps and Entra ID."""

import re
from dataclasses import dataclass

from az_shared.az_cmd import AzCmd, execute_json
from az_shared.errors import FatalError
from az_shared.logs import log

from .configuration import Configuration
from .constants import (
    AZURE_MANAGEMENT_URL,
    DEVOPS_TOKEN_ISSUER_URL,
    FEDERATED_CREDENTIAL_AUDIENCE,
    SERVICE_ENDPOINT_API_PATH,
    SERVICE_ENDPOINT_API_VERSION,
)
from .devops_api import DevOpsApiRequest, invoke_devops_api
from .models import AppIdentity, FederatedCredential, FederationTrust, JsonDict, ServiceConnection

WORKLOAD_IDENTITY_FEDERATION_SCHEME = "WorkloadIdentityFederation"


def federation_trust(config: Configuration, connection_name: str) -> FederationTrust:
    """The subject, issuer and audience Azure DevOps presents for a service connection's token exchange."""
    return FederationTrust(
        subject=f"sc://{config.org_name}/{config.project_name}/{connection_name}",
        issuer=f"{DEVOPS_TOKEN_ISSUER_URL}/{config.org_id}",
        audience=FEDERATED_CREDENTIAL_AUDIENCE,
    )


def federated_credential_name(connection_name: str) -> str:
    """Federated credential names only allow letters, digits, '-' and '_'."""
    return re.sub(r"[^A-Za-z0-9_-]", "-", connection_name)[:120]


@dataclass(frozen=True)
class ServiceEndpointRequest:
    """Body of an AzureRM service endpoint creation request.

    See https://learn.microsoft.com/en-us/rest/api/azure/devops/serviceendpoint/endpoints/create."""

    name: str
    tenant_id: str
    subscription_id: str
    subscription_name: str
    service_principal_client_id: str
    project_id: str
    project_name: str
    description: str = ""

    def __post_init__(self):
        for attr in ("name", "tenant_id", "subscription_id", "service_principal_client_id", "project_id"):
            if not getattr(self, attr):
                raise ValueError(f"Service endpoint request is missing {attr}")

    def to_json(self) -> JsonDict:
        return {
            "name": self.name,
            "type": "AzureRM",
            "url": AZURE_MANAGEMENT_URL,
            "description": self.description,
            "data": {
                "environment": "AzureCloud",
                "scopeLevel": "Subscription",
                "subscriptionId": self.subscription_id,
                "subscriptionName": self.subscription_name,
                "creationMode": "Manual",
            },
            # no client secret: Azure DevOps exchanges its own token for an Entra ID one
            "authorization": {
                "scheme": WORKLOAD_IDENTITY_FEDERATION_SCHEME,
                "parameters": {
                    "tenantid": self.tenant_id,
                    "serviceprincipalid": self.service_principal_client_id,
                },
            },
            "isShared": False,
            "isReady": True,
            "serviceEndpointProjectReferences": [
                {
                    "name": self.name,
                    "description": self.description,
                    "projectReference": {"id": self.project_id, "name": self.project_name},
                }
            ],
        }


def check_reported_trust(expected: FederationTrust, response: JsonDict) -> None:
    """Warn when Azure DevOps reports a different subject or issuer than the ones we derived."""
    parameters = (response.get("authorization") or {}).get("parameters") or {}
    for key, value in (
        ("workloadIdentityFederationSubject", expected.subject),
        ("workloadIdentityFederationIssuer", expected.issuer),
    ):
        reported = parameters.get(key)
        if reported and reported != value:
            log.warning(f"Azure DevOps reports {key} '{reported}' but the federated credential will use '{value}'")


def create_service_connection(config: Configuration, client_id: str, connection_name: str) -> ServiceConnection:
    """Create a subscription-scoped AzureRM service connection authenticated by workload identity federation."""
    log.info(f"Creating Azure DevOps service connection {connection_name} in {config.org_name}/{config.project_name}")
    endpoint = ServiceEndpointRequest(
        name=connection_name,
        tenant_id=config.tenant_id,
        subscription_id=config.subscription_id,
        subscription_name=config.subscription_name,
        service_principal_client_id=client_id,
        project_id=config.project_id,
        project_name=config.project_name,
        description="Terraform deployments",
    )
    response = invoke_devops_api(
        config,
        DevOpsApiRequest(
            api_path=SERVICE_ENDPOINT_API_PATH,
            api_version=SERVICE_ENDPOINT_API_VERSION,
            project_api=True,
            method="POST",
            body=endpoint.to_json(),
        ),
    )
    if not isinstance(response, dict) or not response.get("id"):
        raise FatalError(f"Azure DevOps did not return an id for service connection '{connection_name}': {response}")

    trust = federation_trust(config, connection_name)
    check_reported_trust(trust, response)
    return ServiceConnection(
        id=response["id"],
        name=connection_name,
        subscription_id=config.subscription_id,
        subscription_name=config.subscription_name,
        authorization_scheme=WORKLOAD_IDENTITY_FEDERATION_SCHEME,
        project_id=config.project_id,
        trust=trust,
    )


def create_federated_credential(
    application_id: str, name: str, trust: FederationTrust, description: str
) -> FederatedCredential:
    """Register the trust on the app registration so Entra ID accepts tokens issued by Azure DevOps."""
    log.info(f"Creating federated credential {name} on app {application_id}")
    parameters = {
        "name": name,
        "issuer": trust.issuer,
        "subject": trust.subject,
        "audiences": [trust.audience],
        "description": description,
    }
    credential = (
        execute_json(
            AzCmd("ad app", "federated-credential create").param("--id", application_id).param_json(
                "--parameters", parameters
            )
        )
        or {}
    )
    return FederatedCredential(
        id=credential.get("id", ""),
        name=name,
        application_id=application_id,
        subject=trust.subject,
        issuer=trust.issuer,
        audiences=[trust.audience],
        description=description,
    )


def bind_devops_trust(
    config: Configuration, app_identity: AppIdentity, connection_name: str
) -> tuple[ServiceConnection, FederatedCredential]:
    """Create the service connection, then the federated credential it relies on."""
    connection = create_service_connection(config, app_identity.client_id, connection_name)
    try:
        credential = create_federated_credential(
            app_identity.application_id,
            federated_credential_name(connection_name),
            connection.trust,
            f"Azure DevOps service connection {config.org_name}/{config.project_name}/{connection_name}",
        )
    except Exception:
        log.error(
            f"Service connection {connection_name} ({connection.id}) was created but has no matching federated "
            "credential. Delete it in Azure DevOps or add the credential manually."
        )
        raise
    return connection, credential
