"""The ``/mission subscribe``, ``subscriptions`` and ``unsubscribe`` commands."""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timedelta, timezone

from demokit.messages import CommandResponse, ResponseType
from demokit.missionops.args import parse_args
from demokit.missionops.bot import BotError
from demokit.missionops.subscriptions import (
    MissionSubscription,
    SubscriptionJobError,
    SubscriptionNotFoundError,
)

log = logging.getLogger(__name__)

VALID_STATUSES = ("stalled", "in-air", "completed", "cancelled")
MIN_FREQUENCY = 300

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MAX = 2**63 - 1


def subscribe_help():
    """Help text for ``/mission subscribe``."""
    return (
        "**Mission Subscription Command Help**\n\n"
        "The subscribe command allows you to receive automatic updates about missions with specific statuses.\n\n"
        "**Usage:**\n"
        "- `/mission subscribe --type [status1,status2,...] --frequency [seconds]` - Subscribe to specific mission statuses\n"
        "- `/mission subscribe --type all --frequency [seconds]` - Subscribe to all mission statuses\n\n"
        "**Parameters:**\n"
        "- `--type` or `--types`: Comma-separated list of statuses to subscribe to (stalled, in-air, completed, cancelled), or 'all'\n"
        "- `--frequency`: How often to receive updates, in seconds (minimum 300 seconds / 5 minutes)\n\n"
        "**Examples:**\n"
        "- `/mission subscribe --type stalled,in-air --frequency 3600` - Hourly updates for stalled and in-air missions\n"
        "- `/mission subscribe --type all --frequency 1800` - Updates every 30 minutes for all mission statuses\n\n"
        "To view existing subscriptions, use `/mission subscriptions`\n"
        "To cancel a subscription, use `/mission unsubscribe --id [subscription_id]`"
    )


def subscriptions_help():
    """Help text for ``/mission subscriptions``."""
    return (
        "**Mission Subscriptions Command Help**\n\n"
        "The subscriptions command shows all active mission status subscriptions in the current channel.\n\n"
        "**Usage:**\n"
        "- `/mission subscriptions` - List all active subscriptions in this channel\n\n"
        "**Available Information:**\n"
        "- Subscription ID (needed for unsubscribing)\n"
        "- Status types being monitored\n"
        "- Update frequency\n"
        "- Last update time\n"
        "- Time until next update\n\n"
        "To subscribe to mission updates, use `/mission subscribe --type [status1,status2] --frequency [seconds]`\n"
        "To cancel a subscription, use `/mission unsubscribe --id [subscription_id]`"
    )


def unsubscribe_help():
    """Help text for ``/mission unsubscribe``."""
    return (
        "**Mission Unsubscribe Command Help**\n\n"
        "The unsubscribe command allows you to stop receiving automatic mission updates.\n\n"
        "**Usage:**\n"
        "- `/mission unsubscribe --id [subscription_id]` - Unsubscribe from mission updates\n"
        "- `/mission unsubscribe` - List all subscriptions in this channel with their IDs\n\n"
        "**Parameters:**\n"
        "- `--id`: The ID of the subscription to cancel (required)\n\n"
        "**Example:**\n"
        "- `/mission unsubscribe --id mission-sub-abc123`\n\n"
        "If you don't know your subscription ID, run `/mission subscriptions` to see all active subscriptions in this channel."
    )


def format_time_until(remaining):
    """Human-readable time until the next update; negative means it is due."""
    if remaining < timedelta(0):
        return "Due now"
    total = remaining.total_seconds()
    if total >= 3600:
        return f"{int(total // 3600)}h {int(total // 60) % 60}m"
    if total >= 60:
        return f"{int(total // 60)}m {int(total) % 60}s"
    return f"{int(total)}s"


def _ephemeral(text):
    return CommandResponse(text=text, response_type=ResponseType.EPHEMERAL)


def _in_channel(text):
    return CommandResponse(text=text, response_type=ResponseType.IN_CHANNEL)


def _wants_help(options):
    return bool(options.get("help") or options.get("--help"))


def _aware(value):
    return value.astimezone() if value.tzinfo is None else value


def _rfc1123(value):
    return _aware(value).strftime("%a, %d %b %Y %H:%M:%S %Z")


def _describe_statuses(status_types):
    if status_types:
        return f"mission statuses: {', '.join(status_types)}"
    return "all mission statuses"


class SubscriptionCommandsMixin:
    """Subscription commands for a command handler.

    Expects ``self.subscriptions`` (a mission subscription manager) and
    ``self.bot``.
    """

    def execute_subscribe(self, args):
        """Subscribe the channel to periodic mission status updates."""
        options = parse_args(args.command)
        types_text = options.get("type", "")
        frequency_text = options.get("frequency", "")

        if _wants_help(options):
            return _ephemeral(subscribe_help())
        if not types_text:
            return _ephemeral(
                "Status types are required. Use `--type [status1,status2,...]` or `--type all`"
            )
        if not frequency_text:
            return _ephemeral("Update frequency is required. Use `--frequency [seconds]`")

        status_types = []
        if types_text != "all":
            status_types = types_text.split(",")
            for status in status_types:
                if status not in VALID_STATUSES:
                    return _ephemeral(
                        f"Invalid status type: {status}. Valid types: stalled, in-air, "
                        "completed, cancelled, or 'all'"
                    )

        if not _INTEGER.fullmatch(frequency_text) or abs(int(frequency_text)) > _INT64_MAX:
            return _ephemeral(
                "Invalid frequency format. Please use seconds (e.g., 3600 for hourly)."
            )
        frequency = int(frequency_text)
        if frequency < MIN_FREQUENCY:
            return _ephemeral("Frequency must be at least 300 seconds (5 minutes).")

        subscription = MissionSubscription(
            id=f"mission-sub-{args.channel_id}-{int(time.time())}",
            channel_id=args.channel_id,
            user_id=args.user_id,
            status_types=status_types,
            update_frequency=frequency,
            last_updated=datetime.now(timezone.utc),
        )

        try:
            self.subscriptions.add_subscription(subscription)
        except RuntimeError as err:
            log.error("error adding subscription: %s", err)
            return _ephemeral(f"Error setting up subscription: {err}")

        try:
            self.subscriptions.start_subscription_job(subscription)
        except SubscriptionJobError as err:
            log.error("error starting subscription job: %s", err)
            return _ephemeral("Error starting subscription. Please try again.")

        message = (
            f"✅ Subscribed to {_describe_statuses(status_types)}. Updates will be sent every "
            f"{frequency} seconds (ID: `{subscription.id}`)."
        )
        try:
            self.bot.post_message(args.channel_id, message)
        except BotError as err:
            log.error("error sending confirmation message: %s", err)
            return _ephemeral("Error sending confirmation message. Please check your permissions.")
        return _ephemeral("")

    def execute_subscriptions(self, args):
        """Post a table of the channel's subscriptions."""
        options = parse_args(args.command)
        if _wants_help(options):
            return _ephemeral(subscriptions_help())

        try:
            subscriptions = self.subscriptions.subscriptions_for_channel(args.channel_id)
        except RuntimeError as err:
            log.error("error getting subscriptions: %s", err)
            return _ephemeral(f"Error getting subscriptions: {err}")

        if not subscriptions:
            return _ephemeral("No active subscriptions found in this channel.")

        lines = [
            "**Active Mission Subscriptions in this Channel:**",
            "",
            "| ID | Status Types | Frequency | Last Updated | Next Update In |",
            "|---|-------------|-----------|-------------|-------------|",
        ]
        now = datetime.now(timezone.utc)
        for sub in subscriptions:
            statuses = ", ".join(sub.status_types) or "all"
            next_update = _aware(sub.last_updated) + timedelta(seconds=sub.update_frequency)
            lines.append(
                f"| `{sub.id}` | {statuses} | {sub.update_frequency} seconds | "
                f"{_rfc1123(sub.last_updated)} | {format_time_until(next_update - now)} |"
            )
        message = (
            "\n".join(lines)
            + "\n\nTo unsubscribe, use `/mission unsubscribe --id [subscription_id]`"
        )

        try:
            self.bot.post_message(args.channel_id, message)
        except BotError as err:
            log.error("error sending message: %s", err)
            return _ephemeral("Error sending message. Please check your permissions.")
        return _in_channel("")

    def execute_unsubscribe(self, args):
        """Cancel a subscription in this channel, or list them when no ID is given."""
        options = parse_args(args.command)
        subscription_id = options.get("id", "")

        if _wants_help(options):
            return _ephemeral(unsubscribe_help())
        if not subscription_id:
            return self.execute_subscriptions(args)

        try:
            subscription = self.subscriptions.get_subscription(subscription_id)
        except (SubscriptionNotFoundError, RuntimeError):
            return _ephemeral(f"Subscription with ID `{subscription_id}` not found.")

        if subscription.channel_id != args.channel_id:
            return _ephemeral("This subscription does not belong to this channel.")

        try:
            self.subscriptions.remove_subscription(subscription_id)
        except RuntimeError as err:
            log.error("error removing subscription: %s", err)
            return _ephemeral("Failed to unsubscribe. Please try again.")

        return _in_channel(f"✅ Unsubscribed from {_describe_statuses(subscription.status_types)}.")