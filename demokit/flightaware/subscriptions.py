"""Recurring departure updates posted to channels on a schedule."""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from demokit.messages import PluginAPIError, Post

log = logging.getLogger(__name__)

SUBSCRIPTIONS_KEY = "flight_subscriptions"

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


@dataclass
class FlightSubscription:
    """A channel's request for periodic departures from one airport."""

    id: str
    airport: str
    channel_id: str
    user_id: str
    update_frequency: int
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        """The stored JSON form."""
        return {
            "id": self.id,
            "airport": self.airport,
            "channel_id": self.channel_id,
            "user_id": self.user_id,
            "update_frequency": self.update_frequency,
            "last_updated": _format_time(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data):
        """Build a subscription from its stored JSON form."""
        return cls(
            id=data.get("id") or "",
            airport=data.get("airport") or "",
            channel_id=data.get("channel_id") or "",
            user_id=data.get("user_id") or "",
            update_frequency=int(data.get("update_frequency") or 0),
            last_updated=_parse_time(data.get("last_updated")),
        )


class SubscriptionManager:
    """Keeps flight subscriptions in the KV store and runs one job per subscription.

    The client needs ``kv.get``/``kv.set``, ``channels.get``/``channels.get_direct``
    and ``posts.create_post``. Subscriptions already stored are loaded and started.
    """

    def __init__(self, client, flight_service, message_service):
        self.client = client
        self.flight_service = flight_service
        self.message_service = message_service
        self._lock = threading.RLock()
        self._subscriptions = {}
        self._jobs = {}
        self._load_subscriptions()

    def add_subscription(self, subscription):
        """Store a subscription and start sending its updates."""
        if subscription.update_frequency <= 0:
            raise ValueError("update frequency must be positive")
        with self._lock:
            self._subscriptions[subscription.id] = subscription
            self._save_subscriptions()
        self._start_job(subscription)

    def remove_subscription(self, subscription_id):
        """Stop and forget a subscription; False if there was none."""
        with self._lock:
            if subscription_id not in self._subscriptions:
                return False
            self._stop_job(subscription_id)
            del self._subscriptions[subscription_id]
            self._save_subscriptions()
            return True

    def get_subscription(self, subscription_id):
        """The subscription with this ID, or None."""
        with self._lock:
            return self._subscriptions.get(subscription_id)

    def subscriptions_for_channel(self, channel_id):
        """Subscriptions that post to the channel."""
        with self._lock:
            return [s for s in self._subscriptions.values() if s.channel_id == channel_id]

    def all_subscriptions(self):
        """Every subscription on the server."""
        with self._lock:
            return list(self._subscriptions.values())

    def stop_all(self):
        """Stop every running job; the subscriptions stay stored."""
        with self._lock:
            for subscription_id in list(self._jobs):
                self._stop_job(subscription_id)

    def send_update(self, subscription):
        """Post current departures for one subscription; True if posted."""
        now = datetime.now(timezone.utc)
        try:
            flights = self.flight_service.get_departure_flights(subscription.airport)
        except Exception:
            log.exception(
                "failed to fetch flight data for subscription %s (airport %s, channel %s)",
                subscription.id, subscription.airport, subscription.channel_id,
            )
            return False

        response = self.flight_service.format_flight_response(flights, subscription.airport)

        if not self._channel_exists(subscription.channel_id):
            log.info(
                "channel %s no longer exists, removing flight subscription %s",
                subscription.channel_id, subscription.id,
            )
            self._cleanup_invalid_subscription(subscription, "channel no longer exists")
            return False

        try:
            self.message_service.send_public_message(subscription.channel_id, response)
        except PluginAPIError:
            log.exception(
                "failed to send flight update for subscription %s to channel %s",
                subscription.id, subscription.channel_id,
            )
            return False

        with self._lock:
            subscription.last_updated = now
            self._save_subscriptions()
        return True

    def _start_job(self, subscription):
        stop = threading.Event()
        with self._lock:
            self._stop_job(subscription.id)
            self._jobs[subscription.id] = stop
        thread = threading.Thread(
            target=self._run_job,
            args=(subscription, stop),
            name=f"flight-subscription-{subscription.id}",
            daemon=True,
        )
        thread.start()

    def _stop_job(self, subscription_id):
        stop = self._jobs.pop(subscription_id, None)
        if stop is not None:
            stop.set()

    def _run_job(self, subscription, stop):
        while not stop.is_set():
            try:
                self.send_update(subscription)
            except Exception:
                log.exception("flight subscription %s update failed", subscription.id)
            if stop.wait(subscription.update_frequency):
                return

    def _load_subscriptions(self):
        try:
            data = self.client.kv.get(SUBSCRIPTIONS_KEY)
        except PluginAPIError as err:
            raise RuntimeError("failed to load subscriptions from KV store") from err

        if data is None:
            log.info("no existing subscriptions found, starting with empty state")
            return

        try:
            raw = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as err:
            raise ValueError("failed to parse subscription data") from err
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValueError("failed to parse subscription data: expected an object")

        loaded = {key: FlightSubscription.from_dict(value) for key, value in raw.items()}
        with self._lock:
            self._subscriptions = loaded
        for subscription in loaded.values():
            self._start_job(subscription)
        log.info("loaded %d subscriptions", len(loaded))

    def _save_subscriptions(self):
        payload = {key: sub.to_dict() for key, sub in self._subscriptions.items()}
        data = json.dumps(payload).encode()
        try:
            self.client.kv.set(SUBSCRIPTIONS_KEY, data)
        except PluginAPIError:
            log.exception("failed to save %d subscriptions to KV store", len(payload))
        else:
            log.debug("saved %d subscriptions", len(payload))

    def _channel_exists(self, channel_id):
        try:
            self.client.channels.get(channel_id)
        except PluginAPIError:
            return False
        return True

    def _cleanup_invalid_subscription(self, subscription, reason):
        log.info(
            "cleaning up flight subscription %s (channel %s, airport %s): %s",
            subscription.id, subscription.channel_id, subscription.airport, reason,
        )
        self.remove_subscription(subscription.id)
        self._notify_user_of_cleanup(subscription, reason)

    def _notify_user_of_cleanup(self, subscription, reason):
        bot_user_id = self.message_service.bot_user_id
        try:
            dm_channel = self.client.channels.get_direct(bot_user_id, subscription.user_id)
        except PluginAPIError as err:
            log.debug("could not open DM with %s for cleanup notice: %s", subscription.user_id, err)
            return

        message = (
            "🧹 **Flight Subscription Cleanup**\n\n"
            f"Your flight subscription for **{subscription.airport}** airport "
            f"(ID: `{subscription.id}`) has been automatically removed because {reason}.\n\n"
            "If you need flight updates, please set up a new subscription in an active channel."
        )
        post = Post(channel_id=dm_channel.id, message=message, user_id=bot_user_id)
        try:
            self.client.posts.create_post(post)
        except PluginAPIError as err:
            log.debug("could not send cleanup notice to %s: %s", subscription.user_id, err)