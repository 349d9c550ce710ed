# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

import json
import shlex
from dataclasses import replace
from unittest import TestCase
from unittest.mock import patch as mock_patch

from az_shared.errors import FatalError
from azure_devops_bootstrap import service_connection
from azure_devops_bootstrap.constants import (
    FEDERATED_CREDENTIAL_AUDIENCE,
    SERVICE_ENDPOINT_API_PATH,
    SERVICE_ENDPOINT_API_VERSION,
)
from azure_devops_bootstrap.models import AppIdentity, FederationTrust
from azure_devops_bootstrap.service_connection import ServiceEndpointRequest

from tests.test_data import (
    ACCESS_TOKEN,
    APP_NAME,
    APP_OBJECT_ID,
    CLIENT_ID,
    ENDPOINT_ID,
    PROJECT_ID,
    PROJECT_NAME,
    SERVICE_CONNECTION,
    SERVICE_PRINCIPAL_ID,
    SUBSCRIPTION_ID,
    SUBSCRIPTION_NAME,
    TENANT_ID,
    TEST_CONFIG,
)

SUBJECT = "sc://acme/infra/tf-deploy"
ISSUER = "https://vstoken.dev.azure.com/123"
APP_IDENTITY = AppIdentity(APP_NAME, CLIENT_ID, APP_OBJECT_ID, SERVICE_PRINCIPAL_ID)


class TestFederationTrust(TestCase):
    def test_trust_triple(self):
        """Test the subject, issuer and audience derived for a service connection"""
        trust = service_connection.federation_trust(TEST_CONFIG, SERVICE_CONNECTION)

        self.assertEqual(trust, FederationTrust(SUBJECT, ISSUER, FEDERATED_CREDENTIAL_AUDIENCE))
        self.assertEqual(trust.audience, "api://AzureADTokenExchange")

    def test_trust_ignores_unrelated_settings(self):
        """Test the trust only depends on the organization, project and connection"""
        other = replace(TEST_CONFIG, tenant_id="other", subscription_id="other", access_token="other", project_id="x")

        self.assertEqual(
            service_connection.federation_trust(other, SERVICE_CONNECTION),
            service_connection.federation_trust(TEST_CONFIG, SERVICE_CONNECTION),
        )

    def test_subject_follows_connection_name(self):
        self.assertEqual(service_connection.federation_trust(TEST_CONFIG, "prod").subject, "sc://acme/infra/prod")

    def test_federated_credential_name(self):
        """Test characters federated credentials reject are replaced"""
        self.assertEqual(service_connection.federated_credential_name("tf deploy/prod"), "tf-deploy-prod")
        self.assertEqual(service_connection.federated_credential_name(SERVICE_CONNECTION), SERVICE_CONNECTION)
        self.assertEqual(len(service_connection.federated_credential_name("x" * 200)), 120)


class TestServiceEndpointRequest(TestCase):
    def make_request(self, **kwargs) -> ServiceEndpointRequest:
        values = {
            "name": SERVICE_CONNECTION,
            "tenant_id": TENANT_ID,
            "subscription_id": SUBSCRIPTION_ID,
            "subscription_name": SUBSCRIPTION_NAME,
            "service_principal_client_id": CLIENT_ID,
            "project_id": PROJECT_ID,
            "project_name": PROJECT_NAME,
        }
        values.update(kwargs)
        return ServiceEndpointRequest(**values)

    def test_to_json(self):
        """Test the endpoint is a subscription-scoped AzureRM connection using workload identity federation"""
        body = self.make_request().to_json()

        self.assertEqual(body["name"], SERVICE_CONNECTION)
        self.assertEqual(body["type"], "AzureRM")
        self.assertEqual(body["data"]["scopeLevel"], "Subscription")
        self.assertEqual(body["data"]["subscriptionId"], SUBSCRIPTION_ID)
        self.assertEqual(body["data"]["subscriptionName"], SUBSCRIPTION_NAME)
        self.assertEqual(body["authorization"]["scheme"], "WorkloadIdentityFederation")
        self.assertEqual(
            body["authorization"]["parameters"], {"tenantid": TENANT_ID, "serviceprincipalid": CLIENT_ID}
        )
        self.assertEqual(
            body["serviceEndpointProjectReferences"][0]["projectReference"], {"id": PROJECT_ID, "name": PROJECT_NAME}
        )

    def test_no_secret_in_body(self):
        """Test the request body never carries a secret"""
        serialized = json.dumps(self.make_request().to_json()).lower()

        self.assertNotIn("secret", serialized)
        self.assertNotIn("serviceprincipalkey", serialized)
        self.assertNotIn(ACCESS_TOKEN, serialized)

    def test_requires_client_id(self):
        with self.assertRaises(ValueError):
            self.make_request(service_principal_client_id="")


class TestServiceConnection(TestCase):
    def setUp(self) -> None:
        """Set up test fixtures"""
        self.log_mock = self.patch("azure_devops_bootstrap.service_connection.log")
        self.invoke_mock = self.patch("azure_devops_bootstrap.service_connection.invoke_devops_api")
        self.execute_json_mock = self.patch("azure_devops_bootstrap.service_connection.execute_json")
        self.invoke_mock.return_value = {"id": ENDPOINT_ID, "name": SERVICE_CONNECTION}
        self.execute_json_mock.return_value = {"id": "credential-id"}

    def patch(self, path: str, **kwargs):
        """Helper method to patch and auto-cleanup"""
        patcher = mock_patch(path, **kwargs)
        self.addCleanup(patcher.stop)
        return patcher.start()

    # ===== Service Connection Tests ===== #

    def test_create_service_connection(self):
        """Test the connection is posted to the project-scoped endpoint API"""
        connection = service_connection.create_service_connection(TEST_CONFIG, CLIENT_ID, SERVICE_CONNECTION)

        self.assertEqual(connection.id, ENDPOINT_ID)
        self.assertEqual(connection.name, SERVICE_CONNECTION)
        self.assertEqual(connection.authorization_scheme, "WorkloadIdentityFederation")
        self.assertEqual(connection.trust.subject, SUBJECT)
        config, api_request = self.invoke_mock.call_args[0]
        self.assertIs(config, TEST_CONFIG)
        self.assertEqual(api_request.method, "POST")
        self.assertTrue(api_request.project_api)
        self.assertEqual(api_request.api_path, SERVICE_ENDPOINT_API_PATH)
        self.assertEqual(api_request.api_version, SERVICE_ENDPOINT_API_VERSION)
        self.assertEqual(api_request.body["authorization"]["parameters"]["serviceprincipalid"], CLIENT_ID)

    def test_missing_id_is_fatal(self):
        self.invoke_mock.return_value = {"name": SERVICE_CONNECTION}

        with self.assertRaises(FatalError):
            service_connection.create_service_connection(TEST_CONFIG, CLIENT_ID, SERVICE_CONNECTION)

    def test_reported_trust_mismatch_warns(self):
        """Test a subject reported by Azure DevOps that differs from ours is logged"""
        self.invoke_mock.return_value = {
            "id": ENDPOINT_ID,
            "authorization": {
                "parameters": {
                    "workloadIdentityFederationSubject": "sc://acme/infra/renamed",
                    "workloadIdentityFederationIssuer": ISSUER,
                }
            },
        }

        service_connection.create_service_connection(TEST_CONFIG, CLIENT_ID, SERVICE_CONNECTION)

        self.log_mock.warning.assert_called_once()
        self.assertIn("sc://acme/infra/renamed", self.log_mock.warning.call_args[0][0])

    def test_reported_trust_match_is_silent(self):
        self.invoke_mock.return_value = {
            "id": ENDPOINT_ID,
            "authorization": {"parameters": {"workloadIdentityFederationSubject": SUBJECT}},
        }

        service_connection.create_service_connection(TEST_CONFIG, CLIENT_ID, SERVICE_CONNECTION)

        self.log_mock.warning.assert_not_called()

    # ===== Federated Credential Tests ===== #

    def test_create_federated_credential(self):
        """Test the credential parameters carry the trust triple"""
        trust = FederationTrust(SUBJECT, ISSUER, FEDERATED_CREDENTIAL_AUDIENCE)

        credential = service_connection.create_federated_credential(CLIENT_ID, SERVICE_CONNECTION, trust, "desc")

        self.assertEqual(credential.id, "credential-id")
        self.assertEqual(credential.audiences, [FEDERATED_CREDENTIAL_AUDIENCE])
        cmd = self.execute_json_mock.call_args[0][0]
        self.assertTrue(str(cmd).startswith(f"az ad app federated-credential create --id {CLIENT_ID} --parameters "))
        parameters = json.loads(shlex.split(cmd[-1])[0])
        self.assertEqual(
            parameters,
            {
                "name": SERVICE_CONNECTION,
                "issuer": ISSUER,
                "subject": SUBJECT,
                "audiences": [FEDERATED_CREDENTIAL_AUDIENCE],
                "description": "desc",
            },
        )

    def test_bind_devops_trust(self):
        """Test the credential subject names the connection that was created"""
        connection, credential = service_connection.bind_devops_trust(TEST_CONFIG, APP_IDENTITY, SERVICE_CONNECTION)

        self.assertEqual(connection.id, ENDPOINT_ID)
        self.assertEqual(credential.subject, connection.trust.subject)
        self.assertTrue(credential.subject.endswith(f"/{SERVICE_CONNECTION}"))
        self.assertEqual(credential.issuer, ISSUER)
        self.assertEqual(credential.application_id, CLIENT_ID)

    def test_bind_devops_trust_connection_failure_skips_credential(self):
        self.invoke_mock.side_effect = FatalError("boom")

        with self.assertRaises(FatalError):
            service_connection.bind_devops_trust(TEST_CONFIG, APP_IDENTITY, SERVICE_CONNECTION)

        self.execute_json_mock.assert_not_called()

    def test_bind_devops_trust_credential_failure_reports_orphan(self):
        """Test a connection left without a credential is reported before the error propagates"""
        self.execute_json_mock.side_effect = RuntimeError("Command failed")

        with self.assertRaises(RuntimeError):
            service_connection.bind_devops_trust(TEST_CONFIG, APP_IDENTITY, SERVICE_CONNECTION)

        self.log_mock.error.assert_called_once()
        self.assertIn(ENDPOINT_ID, self.log_mock.error.call_args[0][0])
