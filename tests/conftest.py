import pytest

from formchat_engine.engine import SessionEngine
from formchat_engine.queue import InMemoryMessageQueue

from helpers.fakes import MockFormRepository, MockSessionRepository, RecordingGateway
from helpers.loader import load_forms


@pytest.fixture
def forms():
    """Fresh form rows per test (field ids are regenerated each load)."""
    return load_forms()


@pytest.fixture
def form_repo(forms):
    return MockFormRepository(forms)


@pytest.fixture
def session_repo():
    return MockSessionRepository()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def engine(gateway, form_repo, session_repo):
    return SessionEngine(gateway, form_repo=form_repo, session_repo=session_repo)


@pytest.fixture
def queue():
    return InMemoryMessageQueue()
