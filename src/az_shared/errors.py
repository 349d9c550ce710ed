# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

from collections.abc import Iterable
from typing import Optional


def format_error_details(message: str) -> str:
    return f"\n\nError Details:\n{message}"


# Errors that prevent the bootstrap from completing successfully
class FatalError(Exception):
    """An error that prevents the bootstrap from completing successfully."""


class RefreshTokenError(FatalError):
    """Auth token has expired."""


class StorageAccountCreationError(FatalError):
    """The Terraform state storage account could not be created."""


class ContainerCreationRetriesExhaustedError(FatalError):
    """The blob container could not be created before the retry budget ran out."""

    def __init__(self, container_name: str, attempts: int, last_error: str):
        super().__init__(
            f"Failed to create blob container '{container_name}' after {attempts} attempts. Last error: {last_error}"
        )
        self.container_name = container_name
        self.attempts = attempts
        self.last_error = last_error


class DevOpsApiError(FatalError):
    """The Azure DevOps REST API answered with something other than 200 or 201."""

    def __init__(self, method: str, url: str, status: Optional[int], response: str):
        super().__init__(f"{method} {url} failed with status {status}: {response}")
        self.method = method
        self.url = url
        self.status = status
        self.response = response


# Expected Errors
class RateLimitExceededError(Exception):
    """We have exceeded the rate limit for the Azure API. Script will retry until MAX_RETRIES are reached."""


class ResourceNotFoundError(Exception):
    """Azure resource was not found."""


# Errors users can resolve through manual action
class UserActionRequiredError(Exception):
    """An error that requires user action to resolve."""

    def __init__(self, message: str, user_action_message: Optional[str] = None):
        super().__init__(message)
        self.user_action_message = user_action_message or message


class ConfigurationError(UserActionRequiredError):
    """One or more required settings are missing or blank."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        message = f"Missing required settings: {', '.join(self.missing)}"
        user_action_message = "The following settings must be set before running the bootstrap:"
        user_action_message += "".join(f"\n  - {setting}" for setting in self.missing)
        super().__init__(message, user_action_message)


class InputParamValidationError(UserActionRequiredError):
    """Validation error in user input parameters."""

    def __init__(self, message: str):
        user_action_message = "Invalid input parameter. Please check your input(s) and try again."
        user_action_message += format_error_details(message)
        super().__init__(message, user_action_message)


class AzCliNotAuthenticatedError(UserActionRequiredError):
    """Azure CLI is not authenticated. User needs to run 'az login'."""

    def __init__(self, message: str = "Azure CLI is not authenticated"):
        super().__init__(
            message, user_action_message="Azure CLI is not authenticated. Please run 'az login' first and retry"
        )


class TenantMismatchError(UserActionRequiredError):
    """The Azure CLI is logged into a different tenant than the one configured."""

    def __init__(self, expected_tenant: str, actual_tenant: str):
        message = f"Azure CLI is logged into tenant '{actual_tenant}' but the configured tenant is '{expected_tenant}'"
        super().__init__(message, f"{message}. Run 'az login --tenant {expected_tenant}' and retry")


class AccessError(UserActionRequiredError):
    """Not authorized to access the resource."""

    def __init__(self, message: str):
        user_action_message = "You don't have the necessary Azure permissions to access, create, or perform an action on a required resource."
        user_action_message += "\nCreating app registrations and role assignments requires Owner or User Access Administrator on the subscription."
        user_action_message += format_error_details(message)
        super().__init__(message, user_action_message)


class PolicyError(UserActionRequiredError):
    """An Azure policy blocked the request."""

    def __init__(self, message: str):
        user_action_message = "An Azure policy assigned to this subscription denied the request."
        user_action_message += format_error_details(message)
        super().__init__(message, user_action_message)


class ResourceConflictError(UserActionRequiredError):
    """A resource with the requested name already exists or the name is unavailable."""

    def __init__(self, resource_type: str, name: str, reason: str = ""):
        message = f"{resource_type} name '{name}' is not available"
        if reason:
            message += f": {reason}"
        super().__init__(message, f"{message}. Choose a different name and retry")
        self.resource_type = resource_type
        self.name = name


class ManagedIdentityLoginError(UserActionRequiredError):
    """The Azure CLI is logged in with a managed identity, which cannot be resolved to a directory object."""

    def __init__(self, identity: str):
        message = f"Azure CLI is logged in with a managed identity ({identity})"
        super().__init__(
            message,
            f"{message}. Log in as a user or an app registration service principal with 'az login' and retry",
        )
