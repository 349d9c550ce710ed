# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class FailureKind(Enum):
    TRANSIENT = "transient"
    CONFLICT = "conflict"
    FATAL = "fatal"


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind is FailureKind.TRANSIENT


Result = Union[Success[T], Failure]
