import pytest

from tokenaffirm import (
    AffirmConfig,
    InMemoryProfileResolver,
    InMemorySessionStore,
    TokenAffirm,
)


class Outbox:
    """Captures tokens handed to a factor."""

    def __init__(self):
        self.sent = []

    def send(self, contact, token, factor, settings):
        self.sent.append({"contact": contact, "token": token, "factor": factor})
        return "sent"

    @property
    def last_token(self):
        return self.sent[-1]["token"]


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def profiles():
    resolver = InMemoryProfileResolver()
    resolver.set_profile("alice", "alice@example.com", "default")
    resolver.set_profile("bob", "+14155551234", "default")
    return resolver


@pytest.fixture
def make_affirm(outbox, profiles):
    def factory(send=None, **config):
        config.setdefault("request_count", 100)
        return TokenAffirm(
            "test",
            store=InMemorySessionStore(),
            profiles=profiles,
            config=AffirmConfig(**config),
            factors={"default": {"send": send or outbox.send}},
        )
    return factory
