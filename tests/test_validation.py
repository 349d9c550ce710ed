# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

from unittest import TestCase
from unittest.mock import patch as mock_patch

from az_shared.errors import AzCliNotAuthenticatedError, ManagedIdentityLoginError, TenantMismatchError
from azure_devops_bootstrap import validation

from tests.test_data import CALLER, SUBSCRIPTION_ID, TENANT_ID, TEST_CONFIG, USER_OBJECT_ID

ACCOUNT = {"id": SUBSCRIPTION_ID, "tenantId": TENANT_ID, "user": {"name": "user@example.com", "type": "user"}}


class TestValidation(TestCase):
    def setUp(self) -> None:
        """Set up test fixtures"""
        self.execute_json_mock = self.patch("azure_devops_bootstrap.validation.execute_json")
        self.set_subscription_mock = self.patch("azure_devops_bootstrap.validation.set_subscription")
        self.execute_mock = self.patch("azure_devops_bootstrap.role_setup.execute")
        self.execute_mock.return_value = USER_OBJECT_ID

    def patch(self, path: str, **kwargs):
        """Helper method to patch and auto-cleanup"""
        patcher = mock_patch(path, **kwargs)
        self.addCleanup(patcher.stop)
        return patcher.start()

    def test_validate_az_cli_success(self):
        """Test successful Azure CLI validation"""
        self.execute_json_mock.return_value = ACCOUNT

        self.assertEqual(validation.validate_az_cli(), ACCOUNT)
        self.assertEqual(str(self.execute_json_mock.call_args[0][0]), "az account show")

    def test_validate_az_cli_not_logged_in(self):
        """Test a failing 'az account show' asks the user to log in"""
        self.execute_json_mock.side_effect = RuntimeError("Please run 'az login' to setup account.")

        with self.assertRaises(AzCliNotAuthenticatedError) as ctx:
            validation.validate_az_cli()

        self.assertIn("az login", ctx.exception.user_action_message)

    def test_validate_az_cli_empty_account(self):
        self.execute_json_mock.return_value = None

        with self.assertRaises(AzCliNotAuthenticatedError):
            validation.validate_az_cli()

    def test_validate_tenant_ignores_case(self):
        validation.validate_tenant(TEST_CONFIG, {"tenantId": TENANT_ID.upper()})

    def test_validate_tenant_mismatch(self):
        """Test a login to another tenant is rejected with the tenant to log into"""
        with self.assertRaises(TenantMismatchError) as ctx:
            validation.validate_tenant(TEST_CONFIG, {"tenantId": "other-tenant"})

        self.assertIn(f"az login --tenant {TENANT_ID}", ctx.exception.user_action_message)
        self.assertIn("other-tenant", str(ctx.exception))

    def test_run_preflight_checks(self):
        """Test preflight selects the configured subscription and returns the signed-in caller"""
        self.execute_json_mock.return_value = ACCOUNT

        caller = validation.run_preflight_checks(TEST_CONFIG)

        self.assertEqual(caller, CALLER)
        self.set_subscription_mock.assert_called_once_with(SUBSCRIPTION_ID)
        self.assertIn("az ad signed-in-user show", str(self.execute_mock.call_args[0][0]))

    def test_run_preflight_checks_reads_account_once(self):
        """Test the account from the login check is reused to resolve the caller"""
        self.execute_json_mock.return_value = ACCOUNT

        validation.run_preflight_checks(TEST_CONFIG)

        self.execute_json_mock.assert_called_once()

    def test_run_preflight_checks_rejects_managed_identity(self):
        """Test a managed identity login stops preflight before the subscription is selected"""
        self.execute_json_mock.return_value = {
            **ACCOUNT,
            "user": {"name": "systemAssignedIdentity", "type": "servicePrincipal"},
        }

        with self.assertRaises(ManagedIdentityLoginError):
            validation.run_preflight_checks(TEST_CONFIG)

        self.set_subscription_mock.assert_not_called()
        self.execute_mock.assert_not_called()

    def test_run_preflight_checks_wrong_tenant_skips_subscription(self):
        self.execute_json_mock.return_value = {**ACCOUNT, "tenantId": "other-tenant"}

        with self.assertRaises(TenantMismatchError):
            validation.run_preflight_checks(TEST_CONFIG)

        self.set_subscription_mock.assert_not_called()
