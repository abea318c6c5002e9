import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from demokit.messages import PluginAPIError, Post
from demokit.missionops.models import Mission
from demokit.missionops.subscriptions import (
    MissionSubscription,
    SubscriptionJobError,
    SubscriptionManager,
    SubscriptionNotFoundError,
)


class FakeKV:
    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value
        return True

    def delete(self, key):
        self.data.pop(key, None)


class FakeChannels:
    def __init__(self, existing):
        self.existing = set(existing)

    def get(self, channel_id):
        if channel_id not in self.existing:
            raise PluginAPIError("channel not found")
        return SimpleNamespace(id=channel_id)

    def get_direct(self, first, second):
        return SimpleNamespace(id=f"dm-{second}")


class FakeBot:
    user_id = "bot-user"

    def __init__(self):
        self.posts = []

    def post_message(self, channel_id, message):
        self.posts.append((channel_id, message))
        return Post(channel_id=channel_id, message=message, user_id=self.user_id)


class FakeMissions:
    def __init__(self, missions=()):
        self.missions = list(missions)

    def all_missions(self):
        return list(self.missions)

    def missions_by_status(self, status):
        return [m for m in self.missions if m.status == status]


def make_manager(missions=(), channels=("chan-a", "chan-b")):
    client = SimpleNamespace(kv=FakeKV(), channels=FakeChannels(channels))
    bot = FakeBot()
    return SubscriptionManager(client, bot, FakeMissions(missions)), client, bot


def make_sub(sub_id="s1", channel="chan-a", statuses=None, frequency=300):
    return MissionSubscription(
        id=sub_id,
        channel_id=channel,
        user_id="user-1",
        status_types=list(statuses or []),
        update_frequency=frequency,
        last_updated=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def make_mission(status="stalled", channel="mission-chan"):
    return Mission(
        id="m1",
        name="Alpha",
        callsign="Eagle1",
        departure_airport="JFK",
        arrival_airport="LAX",
        channel_id=channel,
        channel_name="eagle1-alpha",
        status=status,
    )


def test_subscription_round_trip():
    sub = make_sub(statuses=["stalled", "in-air"])
    assert MissionSubscription.from_dict(sub.to_dict()) == sub


def test_subscription_json_keys():
    data = make_sub().to_dict()
    assert set(data) == {"id", "channelId", "userId", "statusTypes", "updateFrequency", "lastUpdated"}


def test_add_and_get_subscription():
    manager, client, _ = make_manager()
    sub = make_sub()
    manager.add_subscription(sub)
    assert manager.get_subscription("s1") == sub
    assert json.loads(client.kv.data["subscriptions_list"]) == ["s1"]


def test_add_generates_missing_id():
    manager, _, _ = make_manager()
    sub = make_sub(sub_id="")
    manager.add_subscription(sub)
    assert sub.id.startswith("mission-sub-chan-a-")
    assert manager.get_subscription(sub.id).channel_id == "chan-a"


def test_adding_twice_lists_once():
    manager, client, _ = make_manager()
    manager.add_subscription(make_sub())
    manager.add_subscription(make_sub())
    assert json.loads(client.kv.data["subscriptions_list"]) == ["s1"]


def test_get_missing_subscription_raises():
    manager, _, _ = make_manager()
    with pytest.raises(SubscriptionNotFoundError):
        manager.get_subscription("nope")


def test_remove_subscription():
    manager, client, _ = make_manager()
    manager.add_subscription(make_sub())
    manager.remove_subscription("s1")
    with pytest.raises(SubscriptionNotFoundError):
        manager.get_subscription("s1")
    assert "subscription_s1" not in client.kv.data


def test_subscriptions_for_channel():
    manager, _, _ = make_manager()
    manager.add_subscription(make_sub("s1", "chan-a"))
    manager.add_subscription(make_sub("s2", "chan-b"))
    assert [s.id for s in manager.subscriptions_for_channel("chan-b")] == ["s2"]


def test_subscriptions_for_status():
    manager, _, _ = make_manager()
    manager.add_subscription(make_sub("all"))
    manager.add_subscription(make_sub("stalled", statuses=["stalled"]))
    manager.add_subscription(make_sub("done", statuses=["completed"]))
    assert [s.id for s in manager.subscriptions_for_status("stalled")] == ["all", "stalled"]


def test_start_job_twice_raises_and_stop_allows_restart():
    manager, _, _ = make_manager()
    sub = make_sub()
    manager.start_subscription_job(sub)
    try:
        with pytest.raises(SubscriptionJobError):
            manager.start_subscription_job(sub)
        manager.stop_subscription_job("s1")
        manager.start_subscription_job(sub)
        with pytest.raises(SubscriptionJobError):
            manager.start_subscription_job(sub)
    finally:
        manager.stop_subscription_job("s1")


def test_start_job_rejects_non_positive_frequency():
    manager, _, _ = make_manager()
    with pytest.raises(SubscriptionJobError):
        manager.start_subscription_job(make_sub(frequency=0))


def test_restart_subscriptions_starts_jobs():
    manager, _, _ = make_manager()
    manager.add_subscription(make_sub())
    manager.restart_subscriptions()
    try:
        with pytest.raises(SubscriptionJobError):
            manager.start_subscription_job(make_sub())
    finally:
        manager.stop_subscription_job("s1")


def test_send_update_posts_table():
    manager, _, bot = make_manager(missions=[make_mission()])
    sub = make_sub(statuses=["stalled"])
    manager.add_subscription(sub)
    assert manager.send_update(sub) is True
    channel, message = bot.posts[0]
    assert channel == "chan-a"
    assert "| Name | Callsign | Departure | Arrival | Status | Channel |" in message
    assert "| Alpha | Eagle1 | JFK | LAX | 🔴 stalled | ~eagle1-alpha |" in message
    assert manager.get_subscription("s1").last_updated > datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_send_update_without_missions_posts_nothing():
    manager, _, bot = make_manager(missions=[make_mission(status="completed")])
    sub = make_sub(statuses=["stalled"])
    assert manager.send_update(sub) is False
    assert bot.posts == []


def test_send_update_to_deleted_channel_cleans_up():
    manager, _, bot = make_manager(missions=[make_mission()], channels=())
    sub = make_sub(channel="gone")
    manager.add_subscription(sub)
    assert manager.send_update(sub) is False
    with pytest.raises(SubscriptionNotFoundError):
        manager.get_subscription("s1")
    assert bot.posts[0][0] == "dm-user-1"
    assert "Mission Subscription Cleanup" in bot.posts[0][1]


def test_notify_skips_mission_channel():
    manager, _, bot = make_manager(channels=("chan-a", "mission-chan"))
    manager.add_subscription(make_sub("s1", "chan-a"))
    manager.add_subscription(make_sub("s2", "mission-chan"))
    manager.notify_subscribers_of_status_change(make_mission(status="in-air"), "stalled")
    assert [channel for channel, _ in bot.posts] == ["chan-a"]
    assert "# Mission Status Change Alert" in bot.posts[0][1]
    assert "stalled → in-air" in bot.posts[0][1]