# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

"""Azure DevOps REST API client."""

import json
import ssl
import urllib.request
from dataclasses import dataclass, field
from typing import Literal, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode

from az_shared.errors import DevOpsApiError
from az_shared.logs import log

from .configuration import Configuration
from .constants import DEVOPS_API_TIMEOUT, DEVOPS_ROOT_URL
from .models import Json

SUCCESS_STATUS_CODES = {200, 201}

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


@dataclass(frozen=True)
class DevOpsApiRequest:
    """A call to an Azure DevOps REST endpoint.

    See https://learn.microsoft.com/en-us/rest/api/azure/devops/."""

    api_path: str
    api_version: str
    project_api: bool = False
    method: HttpMethod = "GET"
    query_parameters: dict[str, str] = field(default_factory=dict)
    body: Optional[Json] = None

    def url(self, org_name: str, project_name: str, root: str = DEVOPS_ROOT_URL) -> str:
        base = f"{root}/{quote(org_name)}"
        if self.project_api:
            base += f"/{quote(project_name)}"
        query = urlencode({"api-version": self.api_version, **self.query_parameters})
        return f"{base}/_apis/{self.api_path.strip('/')}?{query}"


def request(method: str, url: str, body: Optional[Json], headers: dict[str, str]) -> tuple[str, Optional[int]]:
    """Submit a single request and return the response body and status. Never retries."""
    req = urllib.request.Request(
        url, method=method, headers=headers, data=json.dumps(body).encode("utf-8") if body is not None else None
    )
    try:
        with urllib.request.urlopen(req, timeout=DEVOPS_API_TIMEOUT, context=ssl.create_default_context()) as response:
            return response.read().decode("utf-8"), response.status
    except HTTPError as e:
        return e.read().decode("utf-8"), e.code
    except URLError as e:
        return f"Network error: {e.reason}", None
    except TimeoutError as e:
        return f"Network error: {e}", None


def invoke_devops_api(config: Configuration, api_request: DevOpsApiRequest) -> Json:
    """Call Azure DevOps and return the parsed JSON response.

    Any status other than 200 or 201 raises DevOpsApiError with the raw response attached."""
    url = api_request.url(config.org_name, config.project_name)
    log.debug(f"{api_request.method} {url}")
    response, status = request(
        api_request.method,
        url,
        api_request.body,
        {"Authorization": config.authorization_header, "Content-Type": "application/json"},
    )
    if status not in SUCCESS_STATUS_CODES:
        log.error(f"Azure DevOps API call failed with status {status}")
        raise DevOpsApiError(api_request.method, url, status, response)
    if not response.strip():
        return None
    try:
        return json.loads(response)
    except json.JSONDecodeError as e:
        log.error(f"Azure DevOps API returned a non-JSON response with status {status}")
        raise DevOpsApiError(api_request.method, url, status, response) from e
