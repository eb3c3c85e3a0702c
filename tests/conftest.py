import pytest

from donor_matching import DonorMatchingEngine
from notification_agent import NotificationAgent
from notification_content import Channel
from notification_service import InMemoryNotificationLogStore, NotificationService
from record_store import InMemoryRecordStore

from fixtures import TODAY, RecordingChannel


@pytest.fixture
def channels():
    return {channel: RecordingChannel(channel.value) for channel in Channel}


@pytest.fixture
def log_store():
    return InMemoryNotificationLogStore(capacity=100)


@pytest.fixture
def notifier(channels, log_store):
    return NotificationService(channels, log_store)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def matcher(store):
    return DonorMatchingEngine(store, today_provider=lambda: TODAY)


@pytest.fixture
def agent(store, notifier, matcher):
    return NotificationAgent(store, notifier, matcher=matcher, today_provider=lambda: TODAY)
