# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

import logging
from logging import basicConfig, getLogger

log = getLogger("devops_bootstrap")

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def configure_logging(level: str = "INFO"):
    """Send bootstrap logs to stderr at the requested level."""
    basicConfig(level=getattr(logging, level.upper()), format=LOG_FORMAT)


def log_header(message: str):
    """Log a step banner."""
    separator = "=" * 70
    log.info("\n".join(["", separator, message, separator, ""]))
