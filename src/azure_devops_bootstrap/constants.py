# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

"""Constants used across the Azure DevOps bootstrap."""

DEFAULT_REGION = "eastus"
DEFAULT_CONTAINER_NAME = "tfstate"

# Storage account posture
STORAGE_SKU = "Standard_LRS"
STORAGE_KIND = "StorageV2"
STORAGE_MIN_TLS_VERSION = "TLS1_2"
# Hosted CI agents come from shared address ranges, so the account firewall stays open.
STORAGE_DEFAULT_NETWORK_ACTION = "Allow"

# Role assignment propagation is eventually consistent; allows up to ~150 seconds.
CONTAINER_CREATE_MAX_ATTEMPTS = 10
CONTAINER_CREATE_RETRY_DELAY = 15  # seconds

# Built-in roles
STORAGE_BLOB_DATA_CONTRIBUTOR = "Storage Blob Data Contributor"
CONTRIBUTOR = "Contributor"

# Azure DevOps
DEVOPS_ROOT_URL = "https://dev.azure.com"
DEVOPS_API_TIMEOUT = 60  # seconds
DEVOPS_TOKEN_ISSUER_URL = "https://vstoken.dev.azure.com"
SERVICE_ENDPOINT_API_PATH = "serviceendpoint/endpoints"
SERVICE_ENDPOINT_API_VERSION = "7.2-preview.4"
FEDERATED_CREDENTIAL_AUDIENCE = "api://AzureADTokenExchange"
AZURE_MANAGEMENT_URL = "https://management.azure.com/"
