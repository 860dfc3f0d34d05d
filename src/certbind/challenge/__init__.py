"""HTTP-01 challenge response publication and storage."""

from certbind.challenge.publisher import ChallengePublisher
from certbind.challenge.store import (
    ChallengeStore,
    DatabaseChallengeStore,
    InMemoryChallengeStore,
    create_challenge_store,
)

__all__ = [
    "ChallengePublisher",
    "ChallengeStore",
    "DatabaseChallengeStore",
    "InMemoryChallengeStore",
    "create_challenge_store",
]
