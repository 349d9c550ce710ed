# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

import json
import shlex
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass
from functools import reduce
from re import search
from time import sleep
from typing import Any, Optional

from .errors import (
    AccessError,
    PolicyError,
    RateLimitExceededError,
    RefreshTokenError,
    ResourceNotFoundError,
)
from .logs import log

AUTH_FAILED_ERROR = "AuthorizationFailed"
PERMISSION_REQUIRED_ERROR = "permission is needed"
AZURE_THROTTLING_ERRORS = ["TooManyRequests", "Too Many Requests", "ResourceCollectionRequestsThrottled"]
REFRESH_TOKEN_EXPIRED_ERROR = "AADSTS700082"
RESOURCE_NOT_FOUND_ERROR = "ResourceNotFound"
POLICY_ERROR = "RequestDisallowedByPolicy"

INITIAL_RETRY_DELAY = 2  # seconds
RETRY_DELAY_MULTIPLIER = 2
MAX_RETRIES = 7


class Cmd(list[str]):
    """Builder for shell commands."""

    def append(self, token: str) -> "Cmd":
        "Adds a token to the command"
        super().append(token)
        return self

    def flag(self, key: str) -> "Cmd":
        """Adds a flag to the command"""
        return self.append(key)

    def arg(self, value: str, quote: bool = True) -> "Cmd":
        """Adds an argument value to the command"""
        return self.append(shlex.quote(value) if quote else value)

    def param(self, key: str, value: str, quote: bool = True) -> "Cmd":
        """Adds a key-value pair parameter"""
        return self.flag(key).arg(value, quote=quote)

    def param_list(self, key: str, values: Iterable[str], quote: bool = True) -> "Cmd":
        """Adds a list of parameters with the same key"""
        return reduce(lambda c, v: c.arg(v, quote=quote), values, self.flag(key))

    def param_json(self, key: str, value: Any) -> "Cmd":
        """Adds a parameter whose value is an inline JSON document"""
        return self.param(key, json.dumps(value, separators=(",", ":")))

    def __str__(self) -> str:
        return " ".join(self)


class AzCmd(Cmd):
    """Builder for Azure CLI commands."""

    def __init__(self, service: str, action: str):
        """Initialize with service and action (e.g., 'storage', 'account create')."""
        super().__init__(service.split() + action.split())

    def __str__(self) -> str:
        return "az " + super().__str__()


@dataclass(frozen=True)
class CmdResult:
    """Raw outcome of a single CLI invocation."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


def check_access_error(stderr: str) -> Optional[str]:
    # Sample:
    # (AuthorizationFailed) The client 'user@example.com' with object id '00000000-0000-0000-0000-000000000000'
    # does not have authorization to perform action 'Microsoft.Authorization/roleAssignments/write'
    # over scope '/subscriptions/00000000-0000-0000-0000-000000000000' or the scope is invalid.

    client_match = search(r"client '([^']*)'", stderr)
    action_match = search(r"action '([^']*)'", stderr)
    scope_match = search(r"scope '([^']*)'", stderr)

    if not (action_match and scope_match and client_match):
        return None

    return f"Insufficient permissions for {client_match.group(1)} to perform {action_match.group(1)} on {scope_match.group(1)}"


def run(cmd: Cmd) -> CmdResult:
    """Run a CLI command without raising on failure."""
    full_command = str(cmd)
    log.debug(f"Running: {full_command}")
    result = subprocess.run(full_command, shell=True, capture_output=True, text=True)
    return CmdResult(result.returncode, result.stdout or "", result.stderr or "")


def raise_for_known_error(full_command: str, result: CmdResult) -> None:
    """Raise the matching error type for CLI failures we know how to describe."""
    stderr = result.stderr
    if RESOURCE_NOT_FOUND_ERROR in stderr:
        raise ResourceNotFoundError(
            f"Resource not found when executing '{full_command}'\nstdout: {result.stdout}\nstderr: {stderr}"
        )
    if REFRESH_TOKEN_EXPIRED_ERROR in stderr:
        raise RefreshTokenError(stderr)
    if AUTH_FAILED_ERROR in stderr:
        error_message = f"Insufficient permissions to access resource when executing '{full_command}'"
        if error_details := check_access_error(stderr):
            error_message = f"{error_message}: {error_details}"
        raise AccessError(error_message)
    if POLICY_ERROR in stderr:
        error_before_and_after_code = stderr.split(f"({POLICY_ERROR}) ")
        raise PolicyError(
            "\n".join(error_before_and_after_code[1:]) if len(error_before_and_after_code) > 1 else stderr
        )
    if PERMISSION_REQUIRED_ERROR in stderr:
        raise AccessError(f"Insufficient permissions to execute '{full_command}'")


def is_throttled(stderr: str) -> bool:
    return any(text in stderr for text in AZURE_THROTTLING_ERRORS)


def execute(cmd: Cmd, can_fail: bool = False) -> str:
    """Run an Azure CLI command and return output or raise error."""

    full_command = str(cmd)
    delay = INITIAL_RETRY_DELAY

    for attempt in range(MAX_RETRIES):
        result = run(cmd)
        if result.success:
            return result.stdout

        if is_throttled(result.stderr):
            if attempt < MAX_RETRIES - 1:
                log.warning(f"Azure throttling ongoing. Retrying in {delay} seconds...")
                sleep(delay)
                delay *= RETRY_DELAY_MULTIPLIER
                continue
            raise RateLimitExceededError("Rate limit exceeded. Please wait a few minutes and try again.")

        raise_for_known_error(full_command, result)
        if can_fail:
            return ""
        log.error(f"Command failed: {full_command}")
        log.error(result.stderr)
        raise RuntimeError(f"Command failed: {full_command}\nstdout: {result.stdout}\nstderr: {result.stderr}")

    raise RuntimeError(f"Command did not complete: {full_command}")


def execute_json(cmd: Cmd, can_fail: bool = False) -> Any:
    if result := execute(cmd, can_fail=can_fail):
        return json.loads(result)
    return None


def set_subscription(sub_id: str):
    """Set the active Azure subscription."""
    log.debug(f"Setting active subscription to {sub_id}")
    execute(AzCmd("account", "set").param("--subscription", sub_id))
