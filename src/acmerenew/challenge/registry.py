"""Challenge publisher loading.

Resolves ``challenge.publisher`` to a ready-to-use
:class:`~acmerenew.challenge.base.ChallengePublisher`:

- ``webroot``  -- write files under ``challenge.webroot`` (default)
- ``callback`` -- run deploy/cleanup scripts
- ``ext:fully.qualified.PublisherClass`` -- custom publisher, constructed
  with ``challenge.publisher_config``

Usage::

    from acmerenew.challenge.registry import load_publisher

    publisher = load_publisher(settings.challenge)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from acmerenew.challenge.base import ChallengePublisher
from acmerenew.challenge.callback import CallbackPublisher
from acmerenew.challenge.http01 import WebrootPublisher
from acmerenew.core.errors import ConfigurationError

if TYPE_CHECKING:
    from acmerenew.config.settings import ChallengeSettings

log = logging.getLogger(__name__)

BUILTIN_PUBLISHERS = frozenset({"webroot", "callback"})


def load_publisher(settings: ChallengeSettings) -> ChallengePublisher:
    """Create the publisher named by *settings*.

    Raises
    ------
    ConfigurationError
        If the publisher is unknown, cannot be imported, is not a
        :class:`ChallengePublisher`, or rejects its configuration.

    """
    name = settings.publisher
    if name == "webroot":
        publisher: ChallengePublisher = WebrootPublisher(
            settings.webroot or "",
            settings.publisher_config,
        )
    elif name == "callback":
        publisher = CallbackPublisher(settings.publisher_config)
    elif name.startswith("ext:"):
        publisher = _load_external(name[4:], settings)
    else:
        msg = (
            f"Unknown challenge publisher '{name}'; "
            f"built-in options: {sorted(BUILTIN_PUBLISHERS)}. "
            "Use 'ext:mypackage.module.PublisherClass' for custom publishers."
        )
        raise ConfigurationError(msg)
    log.info("Using challenge publisher: %s", name)
    return publisher


def _load_external(fqn: str, settings: ChallengeSettings) -> ChallengePublisher:
    """Import and instantiate an external publisher by fully-qualified name."""
    module_path, _, cls_name = fqn.rpartition(".")
    if not module_path:
        msg = (
            f"Invalid external publisher '{fqn}': must be fully qualified "
            "(e.g. 'mypackage.module.PublisherClass')"
        )
        raise ConfigurationError(msg)
    try:
        module = importlib.import_module(module_path)
        cls = getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load external publisher '{fqn}': {exc}"
        raise ConfigurationError(msg) from exc

    if not (isinstance(cls, type) and issubclass(cls, ChallengePublisher)):
        msg = f"External publisher '{fqn}' must be a subclass of ChallengePublisher"
        raise ConfigurationError(msg)

    try:
        return cls(settings.publisher_config)
    except (TypeError, ValueError) as exc:
        msg = f"External publisher '{fqn}' rejected its configuration: {exc}"
        raise ConfigurationError(msg) from exc
