"""Missions kept in the plugin KV store, and the actions taken on them."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from demokit.messages import PluginAPIError
from demokit.missionops.bot import BotError
from demokit.missionops.models import (
    MISSION_PREFIX,
    MISSIONS_LIST_KEY,
    Mission,
    status_emoji,
)

log = logging.getLogger(__name__)

ACTIVE_MISSIONS_CATEGORY = "Active Missions"

_OBJECTIVES = {
    "all_completed": "✅ All objectives completed",
    "partial": "⚠️ Partial objectives completed",
    "none": "❌ Mission objectives not met",
}

_PERFORMANCE = {
    "excellent": "⭐⭐⭐⭐⭐ Excellent",
    "good": "⭐⭐⭐⭐ Good",
    "satisfactory": "⭐⭐⭐ Satisfactory",
    "needs_improvement": "⭐⭐ Needs Improvement",
}


class MissionStoreError(Exception):
    """Raised when mission data cannot be stored, loaded or acted on."""


class MissionNotFoundError(MissionStoreError, LookupError):
    """Raised when no mission matches."""


class MissionManager:
    """Stores missions and carries out status changes and completion.

    The client needs ``kv``, ``channels``, ``users`` and ``plugins.http(method,
    url, body, headers)``, which returns an object with ``status_code`` and
    ``body``. The bot posts messages and has a ``user_id``.
    """

    def __init__(self, client, bot):
        self.client = client
        self.bot = bot

    def add_mission(self, mission):
        """Store (or overwrite) a mission and list its ID."""
        log.info("adding mission %s (%s)", mission.name, mission.callsign)
        self._set(MISSION_PREFIX + mission.id, mission.to_dict(), "failed to store mission in KV store")
        self._add_mission_to_list(mission.id)

    def get_mission(self, mission_id):
        """The stored mission with this ID."""
        data = self._get(MISSION_PREFIX + mission_id, "failed to get mission from KV store")
        if data is None:
            raise MissionNotFoundError(f"mission not found: {mission_id}")
        if not isinstance(data, dict):
            raise MissionStoreError("failed to unmarshal mission")
        return Mission.from_dict(data)

    def get_mission_by_channel_id(self, channel_id):
        """The mission tracked in this channel."""
        for mission in self.all_missions():
            if mission.channel_id == channel_id:
                return mission
        raise MissionNotFoundError(f"no mission found for channel: {channel_id}")

    def update_mission_status(self, mission_id, status):
        """Change a mission's status, stamping completion for final states."""
        log.debug("updating mission %s to status %s", mission_id, status)
        mission = self.get_mission(mission_id)
        mission.status = status
        if status in ("completed", "cancelled"):
            mission.completed_at = datetime.now(timezone.utc)
        self.add_mission(mission)
        return mission

    def all_missions(self):
        """Every readable mission, in the order they were added."""
        missions = []
        for mission_id in self._missions_list():
            try:
                missions.append(self.get_mission(mission_id))
            except MissionStoreError as err:
                log.error("failed to get mission %s: %s", mission_id, err)
        return missions

    def missions_by_status(self, status):
        """Missions currently in the given status."""
        return [m for m in self.all_missions() if m.status == status]

    def categorize_mission_channel(self, channel_id, team_id):
        """Ask the playbooks service to file the channel under Active Missions."""
        if not channel_id:
            raise ValueError("channel ID is required")

        try:
            self.client.channels.add_member(channel_id, self.bot.user_id)
        except PluginAPIError as err:
            raise MissionStoreError("failed to add bot to channel") from err

        payload = {
            "enabled": True,
            "payload": {"category_name": ACTIVE_MISSIONS_CATEGORY},
            "channel_id": channel_id,
            "action_type": "categorize_channel",
            "trigger_type": "new_member_joins",
        }
        headers = {
            "Content-Type": "application/json",
            "Mattermost-User-ID": self.bot.user_id,
        }
        url = f"/playbooks/api/v0/actions/channels/{channel_id}"
        response = self.client.plugins.http("POST", url, json.dumps(payload).encode(), headers)
        if response.status_code not in (200, 201):
            body = response.body
            if isinstance(body, bytes):
                body = body.decode(errors="replace")
            raise MissionStoreError(
                f"categorize request failed with status {response.status_code}: {body}"
            )
        log.debug("categorized channel %s into %s", channel_id, ACTIVE_MISSIONS_CATEGORY)

    def complete_mission(
        self,
        mission_id,
        objectives_completion,
        notable_events,
        crew_performance,
        mission_duration,
        user_id,
    ):
        """Mark a mission completed and post its report to the mission channel."""
        self.update_mission_status(mission_id, "completed")
        mission = self.get_mission(mission_id)

        try:
            channel = self.client.channels.get(mission.channel_id)
        except PluginAPIError:
            log.exception("error getting channel %s", mission.channel_id)
            raise

        updated_name = f"{status_emoji('completed')} {mission.callsign}: {mission.name}"
        if channel.display_name != updated_name:
            channel.display_name = updated_name
            try:
                self.client.channels.update(channel)
            except PluginAPIError:
                log.exception("error updating channel name")

        report = (
            f"# Post-Mission Report: {mission.name}\n\n"
            f"**Mission:** {mission.name} (Callsign: **{mission.callsign}**)\n"
            f"**Route:** {mission.departure_airport} → {mission.arrival_airport}\n"
            f"**Duration:** {mission_duration} hours\n"
            f"**Objectives:** {_OBJECTIVES.get(objectives_completion, 'Unknown')}\n"
            f"**Crew Performance:** {_PERFORMANCE.get(crew_performance, 'Unknown')}\n"
        )
        if notable_events:
            report += f"\n## Notable Events\n{notable_events}\n"

        try:
            username = self.client.users.get(user_id).username
        except PluginAPIError:
            log.exception("error getting user %s", user_id)
            username = "unknown"
        submitted = datetime.now().astimezone().strftime("%a, %d %b %Y %H:%M:%S %Z")
        report += f"\n*Report submitted by @{username} on {submitted}*"

        self.bot.post_message(mission.channel_id, report)

        try:
            self.bot.post_message(
                mission.channel_id, f"✅ Mission **{mission.name}** has been marked as completed!"
            )
        except BotError:
            log.exception("error sending success message")

    def _get(self, key, failure):
        try:
            data = self.client.kv.get(key)
        except PluginAPIError as err:
            raise MissionStoreError(failure) from err
        if data is None:
            return None
        try:
            return json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as err:
            raise MissionStoreError(f"failed to unmarshal {key}") from err

    def _set(self, key, value, failure):
        try:
            saved = self.client.kv.set(key, json.dumps(value).encode())
        except PluginAPIError as err:
            raise MissionStoreError(failure) from err
        if not saved:
            raise MissionStoreError(failure)

    def _missions_list(self):
        ids = self._get(MISSIONS_LIST_KEY, "failed to get missions list from KV store")
        return list(ids or [])

    def _add_mission_to_list(self, mission_id):
        ids = self._missions_list()
        if mission_id in ids:
            return
        ids.append(mission_id)
        self._set(MISSIONS_LIST_KEY, ids, "failed to save missions list to KV store")

    def _remove_mission_from_list(self, mission_id):
        ids = [existing for existing in self._missions_list() if existing != mission_id]
        self._set(MISSIONS_LIST_KEY, ids, "failed to save missions list to KV store")