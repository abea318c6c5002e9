"""Channel subscriptions to periodic mission status updates."""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from demokit.messages import PluginAPIError
from demokit.missionops.bot import BotError
from demokit.missionops.missions import MissionStoreError
from demokit.missionops.models import status_emoji

log = logging.getLogger(__name__)

SUBSCRIPTION_PREFIX = "subscription_"
SUBSCRIPTIONS_LIST_KEY = "subscriptions_list"

_FRACTION = re.compile(r"\.(\d+)")


def _format_time(value):
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


def _parse_time(text):
    if not text:
        return datetime.now(timezone.utc)
    normalised = text[:-1] + "+00:00" if text.endswith("Z") else text
    normalised = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalised, count=1)
    parsed = datetime.fromisoformat(normalised)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _rfc1123(value):
    if value.tzinfo is None:
        value = value.astimezone()
    return value.strftime("%a, %d %b %Y %H:%M:%S %Z")


class SubscriptionNotFoundError(LookupError):
    """Raised when no subscription has the requested ID."""


class SubscriptionJobError(Exception):
    """Raised when a subscription's update job cannot be started."""


@dataclass
class MissionSubscription:
    """A channel's request for periodic updates; no status types means all."""

    id: str
    channel_id: str
    user_id: str
    status_types: list[str] = field(default_factory=list)
    update_frequency: int = 0
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        """The stored JSON form."""
        return {
            "id": self.id,
            "channelId": self.channel_id,
            "userId": self.user_id,
            "statusTypes": list(self.status_types),
            "updateFrequency": self.update_frequency,
            "lastUpdated": _format_time(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data):
        """Build a subscription from its stored JSON form."""
        return cls(
            id=data.get("id") or "",
            channel_id=data.get("channelId") or "",
            user_id=data.get("userId") or "",
            status_types=list(data.get("statusTypes") or []),
            update_frequency=int(data.get("updateFrequency") or 0),
            last_updated=_parse_time(data.get("lastUpdated")),
        )


class SubscriptionManager:
    """Keeps mission subscriptions in the KV store and runs their update jobs.

    The client needs ``kv.get``/``kv.set``/``kv.delete`` and
    ``channels.get``/``channels.get_direct``. The bot posts messages and has a
    ``user_id``; ``missions`` is a mission manager.
    """

    def __init__(self, client, bot, missions):
        self.client = client
        self.bot = bot
        self.missions = missions
        self._jobs_lock = threading.Lock()
        self._jobs = {}

    def add_subscription(self, subscription):
        """Store (or overwrite) a subscription and list its ID."""
        log.debug("adding subscription %s for channel %s", subscription.id, subscription.channel_id)
        if not subscription.id:
            subscription.id = (
                f"mission-sub-{subscription.channel_id}-{int(datetime.now().timestamp())}"
            )
        self._set(
            SUBSCRIPTION_PREFIX + subscription.id,
            subscription.to_dict(),
            "failed to store subscription in KV store",
        )
        self._add_subscription_to_list(subscription.id)

    def get_subscription(self, subscription_id):
        """The stored subscription with this ID."""
        data = self._get(
            SUBSCRIPTION_PREFIX + subscription_id, "failed to get subscription from KV store"
        )
        if data is None:
            raise SubscriptionNotFoundError(f"subscription not found: {subscription_id}")
        if not isinstance(data, dict):
            raise RuntimeError("failed to unmarshal subscription")
        return MissionSubscription.from_dict(data)

    def remove_subscription(self, subscription_id):
        """Stop a subscription's job and delete it from the store."""
        log.debug("removing subscription %s", subscription_id)
        self.stop_subscription_job(subscription_id)
        try:
            self.client.kv.delete(SUBSCRIPTION_PREFIX + subscription_id)
        except PluginAPIError as err:
            raise RuntimeError("failed to remove subscription from KV store") from err
        self._remove_subscription_from_list(subscription_id)

    def subscriptions_for_channel(self, channel_id):
        """Subscriptions that post to the channel."""
        return [s for s in self._all_subscriptions() if s.channel_id == channel_id]

    def subscriptions_for_status(self, status):
        """Subscriptions interested in the status, including those for all statuses."""
        return [
            s for s in self._all_subscriptions()
            if not s.status_types or status in s.status_types
        ]

    def restart_subscriptions(self):
        """Start a job for every stored subscription."""
        ids = self._subscriptions_list()
        log.debug("restarting %d subscription jobs", len(ids))
        for subscription_id in ids:
            try:
                subscription = self.get_subscription(subscription_id)
            except (SubscriptionNotFoundError, RuntimeError) as err:
                log.error("failed to get subscription %s for restart: %s", subscription_id, err)
                continue
            try:
                self.start_subscription_job(subscription)
            except SubscriptionJobError as err:
                log.error("failed to restart subscription job %s: %s", subscription_id, err)

    def start_subscription_job(self, subscription):
        """Send updates for the subscription on its schedule in the background."""
        if subscription.update_frequency <= 0:
            raise SubscriptionJobError(
                f"invalid update frequency for subscription: {subscription.id}"
            )
        with self._jobs_lock:
            if subscription.id in self._jobs:
                raise SubscriptionJobError(f"subscription job already running: {subscription.id}")
            stop = threading.Event()
            self._jobs[subscription.id] = stop
        threading.Thread(
            target=self._run_job,
            args=(subscription, stop),
            name=f"mission-subscription-{subscription.id}",
            daemon=True,
        ).start()

    def stop_subscription_job(self, subscription_id):
        """Stop the subscription's job if one is running."""
        with self._jobs_lock:
            stop = self._jobs.pop(subscription_id, None)
        if stop is not None:
            stop.set()

    def send_update(self, subscription):
        """Post a status table of matching missions; True if it was posted."""
        now = datetime.now().astimezone()
        log.debug("fetching mission updates for subscription %s", subscription.id)

        if subscription.status_types:
            missions = []
            for status in subscription.status_types:
                try:
                    missions.extend(self.missions.missions_by_status(status))
                except MissionStoreError as err:
                    log.error("failed to get missions with status %s: %s", status, err)
        else:
            try:
                missions = self.missions.all_missions()
            except MissionStoreError as err:
                log.error("failed to get all missions for subscription: %s", err)
                return False

        if not missions:
            log.debug("no missions found for subscription %s", subscription.id)
            return False

        lines = [
            f"# Mission Status Update ({_rfc1123(now)})",
            "",
            "| Name | Callsign | Departure | Arrival | Status | Channel |",
            "|------|----------|-----------|---------|--------|--------|",
        ]
        for mission in missions:
            lines.append(
                f"| {mission.name} | {mission.callsign} | {mission.departure_airport} | "
                f"{mission.arrival_airport} | {status_emoji(mission.status)} {mission.status} | "
                f"~{mission.channel_name} |"
            )
        statuses = ", ".join(subscription.status_types) or "all statuses"
        message = "\n".join(lines) + "\n" + (
            f"\n\n*This is an automated update for mission statuses: {statuses}. "
            f"Updates every {subscription.update_frequency} seconds.*"
        )

        if not self._channel_exists(subscription.channel_id):
            log.info(
                "channel %s no longer exists, removing mission subscription %s",
                subscription.channel_id, subscription.id,
            )
            self._cleanup_invalid_subscription(subscription, "channel no longer exists")
            return False

        try:
            self.bot.post_message(subscription.channel_id, message)
        except BotError as err:
            log.error("failed to send mission update: %s", err)
            return False

        subscription.last_updated = now
        try:
            self.add_subscription(subscription)
        except RuntimeError as err:
            log.error("failed to update subscription last updated time: %s", err)
        return True

    def notify_subscribers_of_status_change(self, mission, old_status):
        """Tell every interested channel, other than the mission's own, of a status change."""
        try:
            subscriptions = self.subscriptions_for_status(mission.status)
        except RuntimeError as err:
            log.error("error getting subscriptions for status %s: %s", mission.status, err)
            return
        if not subscriptions:
            log.info("no subscriptions found for status %s", mission.status)
            return

        message = (
            "# Mission Status Change Alert\n\n"
            f"**Mission:** {mission.name} (Callsign: **{mission.callsign}**)\n"
            f"**Status Changed:** {old_status} → {mission.status}\n"
            f"**Departure:** {mission.departure_airport}\n"
            f"**Arrival:** {mission.arrival_airport}\n\n"
            f"[View Mission Channel](~{mission.channel_name})"
        )
        for subscription in subscriptions:
            if subscription.channel_id == mission.channel_id:
                continue
            if not self._channel_exists(subscription.channel_id):
                log.info(
                    "channel %s no longer exists, removing subscription %s",
                    subscription.channel_id, subscription.id,
                )
                self._cleanup_invalid_subscription(subscription, "channel no longer exists")
                continue
            try:
                self.bot.post_message(subscription.channel_id, message)
            except BotError as err:
                log.error("error sending status change to subscription %s: %s", subscription.id, err)

    def _run_job(self, subscription, stop):
        log.debug("starting subscription job %s", subscription.id)
        while not stop.is_set():
            try:
                self.send_update(subscription)
            except Exception:
                log.exception("mission subscription %s update failed", subscription.id)
            if stop.wait(subscription.update_frequency):
                break
        log.debug("stopping subscription job %s", subscription.id)

    def _all_subscriptions(self):
        subscriptions = []
        for subscription_id in self._subscriptions_list():
            try:
                subscriptions.append(self.get_subscription(subscription_id))
            except (SubscriptionNotFoundError, RuntimeError) as err:
                log.error("failed to get subscription %s: %s", subscription_id, err)
        return subscriptions

    def _get(self, key, failure):
        try:
            data = self.client.kv.get(key)
        except PluginAPIError as err:
            raise RuntimeError(failure) from err
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError as err:
            raise RuntimeError(f"failed to unmarshal {key}") from err

    def _set(self, key, value, failure):
        try:
            saved = self.client.kv.set(key, json.dumps(value).encode())
        except PluginAPIError as err:
            raise RuntimeError(failure) from err
        if not saved:
            raise RuntimeError(failure)

    def _subscriptions_list(self):
        ids = self._get(SUBSCRIPTIONS_LIST_KEY, "failed to get subscriptions list from KV store")
        return list(ids or [])

    def _add_subscription_to_list(self, subscription_id):
        ids = self._subscriptions_list()
        if subscription_id in ids:
            return
        ids.append(subscription_id)
        self._set(SUBSCRIPTIONS_LIST_KEY, ids, "failed to save subscriptions list to KV store")

    def _remove_subscription_from_list(self, subscription_id):
        ids = [existing for existing in self._subscriptions_list() if existing != subscription_id]
        self._set(SUBSCRIPTIONS_LIST_KEY, ids, "failed to save subscriptions list to KV store")

    def _channel_exists(self, channel_id):
        try:
            self.client.channels.get(channel_id)
        except PluginAPIError:
            return False
        return True

    def _cleanup_invalid_subscription(self, subscription, reason):
        log.info(
            "cleaning up mission subscription %s (channel %s, statuses %s): %s",
            subscription.id, subscription.channel_id, subscription.status_types, reason,
        )
        try:
            self.remove_subscription(subscription.id)
        except RuntimeError as err:
            log.error("failed to remove invalid subscription %s: %s", subscription.id, err)
        self._notify_user_of_cleanup(subscription, reason)

    def _notify_user_of_cleanup(self, subscription, reason):
        try:
            dm_channel = self.client.channels.get_direct(self.bot.user_id, subscription.user_id)
        except PluginAPIError as err:
            log.debug("could not open DM with %s for cleanup notice: %s", subscription.user_id, err)
            return
        statuses = ", ".join(subscription.status_types) or "all status types"
        message = (
            "🧹 **Mission Subscription Cleanup**\n\n"
            f"Your mission subscription for **{statuses}** (ID: `{subscription.id}`) "
            f"has been automatically removed because {reason}.\n\n"
            "If you need mission updates, please set up a new subscription in an active channel."
        )
        try:
            self.bot.post_message(dm_channel.id, message)
        except BotError as err:
            log.debug("could not send cleanup notice to %s: %s", subscription.user_id, err)