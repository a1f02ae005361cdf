"""http-01 challenge publication.

Publishers make the CA's token reachable under
``/.well-known/acme-challenge/`` and withdraw it afterwards.
"""

from acmerenew.challenge.base import ChallengePublisher
from acmerenew.challenge.callback import CallbackPublisher
from acmerenew.challenge.http01 import WebrootPublisher
from acmerenew.challenge.registry import load_publisher

__all__ = [
    "CallbackPublisher",
    "ChallengePublisher",
    "WebrootPublisher",
    "load_publisher",
]
