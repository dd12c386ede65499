# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging helpers for mail-lro.

Handlers and formatting are configured once by the CLI entry point via
:func:`configure_logging`; library modules only ask for named loggers.

Example:
    Typical usage in a module::

        from mail_lro.logger import get_logger

        logger = get_logger("poller")
        logger.info("Operation %s completed", handle)
"""

from __future__ import annotations

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "MailLro") -> logging.Logger:
    """Retrieve a logger under the ``mail_lro`` namespace.

    Args:
        name: Logger name. Names outside the package namespace are nested
            under ``mail_lro`` so a single level setting controls them all.

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    if name != "mail_lro" and not name.startswith("mail_lro."):
        name = f"mail_lro.{name}"
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for command-line runs."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,
    )
