from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from demokit.messages import Post, ResponseType
from demokit.missionops.bot import BotError
from demokit.missionops.subscription_commands import (
    SubscriptionCommandsMixin,
    format_time_until,
    subscribe_help,
    subscriptions_help,
    unsubscribe_help,
)
from demokit.missionops.subscriptions import (
    MissionSubscription,
    SubscriptionJobError,
    SubscriptionNotFoundError,
)


class FakeSubscriptions:
    def __init__(self):
        self.stored = {}
        self.started = []
        self.removed = []
        self.fail_start = False

    def add_subscription(self, subscription):
        self.stored[subscription.id] = subscription

    def start_subscription_job(self, subscription):
        if self.fail_start:
            raise SubscriptionJobError("already running")
        self.started.append(subscription.id)

    def get_subscription(self, subscription_id):
        try:
            return self.stored[subscription_id]
        except KeyError:
            raise SubscriptionNotFoundError(subscription_id) from None

    def remove_subscription(self, subscription_id):
        del self.stored[subscription_id]
        self.removed.append(subscription_id)

    def subscriptions_for_channel(self, channel_id):
        return [s for s in self.stored.values() if s.channel_id == channel_id]


class FakeBot:
    user_id = "bot-user"

    def __init__(self, fail=False):
        self.posts = []
        self.fail = fail

    def post_message(self, channel_id, message):
        if self.fail:
            raise BotError("cannot post")
        self.posts.append((channel_id, message))
        return Post(channel_id=channel_id, message=message, user_id=self.user_id)


class Handler(SubscriptionCommandsMixin):
    def __init__(self, bot=None):
        self.client = SimpleNamespace()
        self.subscriptions = FakeSubscriptions()
        self.bot = bot or FakeBot()


def command(text, channel="chan-1"):
    return SimpleNamespace(command=text, channel_id=channel, user_id="user-1", team_id="team-1")


def test_format_time_until_due_now():
    assert format_time_until(timedelta(seconds=-1)) == "Due now"


def test_format_time_until_hours_and_minutes():
    assert format_time_until(timedelta(hours=2, minutes=5, seconds=30)) == "2h 5m"


def test_format_time_until_minutes_and_seconds():
    assert format_time_until(timedelta(minutes=3, seconds=7)) == "3m 7s"


def test_format_time_until_seconds_only():
    text = format_time_until(timedelta(seconds=45))
    assert text.startswith("45") and text.endswith("s") and "m" not in text


def test_subscribe_requires_type():
    response = SubscriptionCommandsMixin.execute_subscribe(
        Handler(), command("/mission subscribe --frequency 3600")
    )
    assert response.text == (
        "Status types are required. Use `--type [status1,status2,...]` or `--type all`"
    )


def test_subscribe_requires_frequency():
    response = SubscriptionCommandsMixin.execute_subscribe(
        Handler(), command("/mission subscribe --type all")
    )
    assert response.text == "Update frequency is required. Use `--frequency [seconds]`"


def test_subscribe_rejects_unknown_status():
    handler = Handler()
    response = SubscriptionCommandsMixin.execute_subscribe(
        handler, command("/mission subscribe --type stalled,flying --frequency 3600")
    )
    assert response.text.startswith("Invalid status type: flying.")
    assert handler.subscriptions.stored == {}


def test_subscribe_rejects_non_numeric_frequency():
    response = SubscriptionCommandsMixin.execute_subscribe(
        Handler(), command("/mission subscribe --type all --frequency soon")
    )
    assert response.text == "Invalid frequency format. Please use seconds (e.g., 3600 for hourly)."


def test_subscribe_rejects_short_frequency():
    response = SubscriptionCommandsMixin.execute_subscribe(
        Handler(), command("/mission subscribe --type all --frequency 299")
    )
    assert response.text == "Frequency must be at least 300 seconds (5 minutes)."


def test_subscribe_stores_and_starts_subscription():
    handler = Handler()
    response = SubscriptionCommandsMixin.execute_subscribe(
        handler, command("/mission subscribe --type stalled,in-air --frequency 3600")
    )
    assert response.text == ""
    assert response.response_type is ResponseType.EPHEMERAL
    (subscription,) = handler.subscriptions.stored.values()
    assert subscription.status_types == ["stalled", "in-air"]
    assert subscription.update_frequency == 3600
    assert subscription.channel_id == "chan-1"
    assert subscription.user_id == "user-1"
    assert subscription.id.startswith("mission-sub-chan-1-")
    assert handler.subscriptions.started == [subscription.id]
    channel, message = handler.bot.posts[0]
    assert channel == "chan-1"
    assert "mission statuses: stalled, in-air" in message
    assert subscription.id in message


def test_subscribe_all_means_no_status_filter():
    handler = Handler()
    response = SubscriptionCommandsMixin.execute_subscribe(
        handler, command("/mission subscribe --type all --frequency 1800")
    )
    assert response.text == ""
    (subscription,) = handler.subscriptions.stored.values()
    assert subscription.status_types == []
    assert "all mission statuses" in handler.bot.posts[0][1]


def test_subscribe_reports_job_failure():
    handler = Handler()
    handler.subscriptions.fail_start = True
    response = SubscriptionCommandsMixin.execute_subscribe(
        handler, command("/mission subscribe --type all --frequency 600")
    )
    assert response.text == "Error starting subscription. Please try again."


def test_subscribe_reports_post_failure():
    handler = Handler(bot=FakeBot(fail=True))
    response = SubscriptionCommandsMixin.execute_subscribe(
        handler, command("/mission subscribe --type all --frequency 600")
    )
    assert response.text == "Error sending confirmation message. Please check your permissions."


def test_subscribe_help():
    response = SubscriptionCommandsMixin.execute_subscribe(
        Handler(), command("/mission subscribe --help please")
    )
    assert response.text == subscribe_help()


def test_subscriptions_empty_channel():
    response = SubscriptionCommandsMixin.execute_subscriptions(
        Handler(), command("/mission subscriptions")
    )
    assert response.text == "No active subscriptions found in this channel."


def test_subscriptions_lists_channel_subscriptions():
    handler = Handler()
    now = datetime.now(timezone.utc)
    handler.subscriptions.add_subscription(
        MissionSubscription(
            id="sub-old", channel_id="chan-1", user_id="user-1",
            status_types=["stalled"], update_frequency=300,
            last_updated=now - timedelta(hours=2),
        )
    )
    handler.subscriptions.add_subscription(
        MissionSubscription(
            id="sub-new", channel_id="chan-1", user_id="user-1",
            status_types=[], update_frequency=3600, last_updated=now,
        )
    )
    handler.subscriptions.add_subscription(
        MissionSubscription(
            id="sub-elsewhere", channel_id="chan-2", user_id="user-1",
            update_frequency=3600, last_updated=now,
        )
    )
    response = SubscriptionCommandsMixin.execute_subscriptions(
        handler, command("/mission subscriptions")
    )
    assert response.response_type is ResponseType.IN_CHANNEL
    assert response.text == ""
    channel, message = handler.bot.posts[0]
    assert channel == "chan-1"
    assert "`sub-old`" in message and "`sub-new`" in message
    assert "sub-elsewhere" not in message
    assert "Due now" in message
    assert "59m" in message
    assert message.endswith("To unsubscribe, use `/mission unsubscribe --id [subscription_id]`")


def test_subscriptions_help():
    response = SubscriptionCommandsMixin.execute_subscriptions(
        Handler(), command("/mission subscriptions --help yes")
    )
    assert response.text == subscriptions_help()


def test_unsubscribe_unknown_id():
    response = SubscriptionCommandsMixin.execute_unsubscribe(
        Handler(), command("/mission unsubscribe --id missing")
    )
    assert response.text == "Subscription with ID `missing` not found."


def test_unsubscribe_other_channel():
    handler = Handler()
    handler.subscriptions.add_subscription(
        MissionSubscription(id="sub-1", channel_id="chan-2", user_id="user-1", update_frequency=300)
    )
    response = SubscriptionCommandsMixin.execute_unsubscribe(
        handler, command("/mission unsubscribe --id sub-1")
    )
    assert response.text == "This subscription does not belong to this channel."
    assert "sub-1" in handler.subscriptions.stored


def test_unsubscribe_removes_subscription():
    handler = Handler()
    handler.subscriptions.add_subscription(
        MissionSubscription(
            id="sub-1", channel_id="chan-1", user_id="user-1",
            status_types=["stalled"], update_frequency=300,
        )
    )
    response = SubscriptionCommandsMixin.execute_unsubscribe(
        handler, command("/mission unsubscribe --id sub-1")
    )
    assert response.text == "✅ Unsubscribed from mission statuses: stalled."
    assert response.response_type is ResponseType.IN_CHANNEL
    assert handler.subscriptions.removed == ["sub-1"]


def test_unsubscribe_without_id_lists_subscriptions():
    response = SubscriptionCommandsMixin.execute_unsubscribe(
        Handler(), command("/mission unsubscribe")
    )
    assert response.text == "No active subscriptions found in this channel."


def test_unsubscribe_help():
    response = SubscriptionCommandsMixin.execute_unsubscribe(
        Handler(), command("/mission unsubscribe --help yes")
    )
    assert response.text == unsubscribe_help()


@pytest.mark.parametrize("text", [subscribe_help(), subscriptions_help(), unsubscribe_help()])
def test_help_texts_mention_unsubscribe(text):
    assert "/mission unsubscribe" in text