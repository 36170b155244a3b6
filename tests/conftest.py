import pytest

from sshkey import MemoryStore, Reporter

from .fake import FakeHost


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def rep():
    return Reporter()
