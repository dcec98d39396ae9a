from __future__ import annotations

import logging


def configure_app_logging(level: str = "INFO") -> None:
    """
    Set the level of the ``access_gate`` logger tree.

    Notes:
    - Uvicorn (or the host application) owns the handlers; this only sets levels.
    - Set ``ACCESS_GATE_LOG_LEVEL=DEBUG`` to see every allow/deny decision.
    - Audit lines from the gate log at INFO when ``detailed_logging`` is enabled.
    """

    normalized = level.upper()
    package_logger = logging.getLogger("access_gate")
    package_logger.setLevel(normalized)
    package_logger.propagate = True
