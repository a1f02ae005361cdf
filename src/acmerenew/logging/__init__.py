"""Logging subsystem for acmerenew.

Public API::

    from acmerenew.logging import configure_logging, run_context

    configure_logging(settings.logging)
    with run_context(settings.certificate.service_name):
        ...
"""

from acmerenew.logging.setup import configure_logging, run_context

__all__ = ["configure_logging", "run_context"]
