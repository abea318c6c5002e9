"""The ``/mission complete`` command and its report dialog submission."""

from __future__ import annotations

import json
import logging
import threading

from demokit.messages import CommandResponse, PluginAPIError, ResponseType
from demokit.missionops.args import parse_args
from demokit.missionops.bot import BotError
from demokit.missionops.missions import MissionStoreError

log = logging.getLogger(__name__)

PLUGIN_ID = "com.coltoneshaw.missionops"


def _ephemeral(text):
    return CommandResponse(text=text, response_type=ResponseType.EPHEMERAL)


def _json_body(payload):
    return (json.dumps(payload) + "\n").encode()


def _dialog_elements():
    return [
        {
            "display_name": "Mission Objectives Completion",
            "name": "mission_objectives_completion",
            "type": "select",
            "optional": True,
            "options": [
                {"text": "Yes - All objectives completed", "value": "all_completed"},
                {"text": "Partial - Some objectives completed", "value": "partial"},
                {"text": "No - Mission objectives not met", "value": "none"},
            ],
        },
        {
            "display_name": "Mission Duration",
            "name": "mission_duration",
            "type": "text",
            "subtype": "number",
            "optional": False,
            "placeholder": "Enter flight hours",
        },
        {
            "display_name": "Crew Performance",
            "name": "crew_performance",
            "type": "select",
            "optional": True,
            "options": [
                {"text": "Excellent", "value": "excellent"},
                {"text": "Good", "value": "good"},
                {"text": "Satisfactory", "value": "satisfactory"},
                {"text": "Needs Improvement", "value": "needs_improvement"},
            ],
        },
        {
            "display_name": "Notable Events",
            "name": "notable_events",
            "type": "textarea",
            "optional": True,
            "placeholder": "Describe any notable events during the mission",
            "max_length": 2000,
        },
    ]


class CompleteCommandMixin:
    """Mission completion for a command handler.

    Expects ``self.client`` (with ``frontend.open_interactive_dialog``),
    ``self.missions`` and ``self.subscriptions``.
    """

    def execute_complete(self, args):
        """Open the post-mission report dialog for the mission."""
        mission_id = parse_args(args.command).get("id", "")
        if not mission_id:
            try:
                mission_id = self.missions.get_mission_by_channel_id(args.channel_id).id
            except MissionStoreError:
                return _ephemeral(
                    "This command must be run in a mission channel, or provide --id [mission_id]"
                )

        try:
            mission = self.missions.get_mission(mission_id)
        except MissionStoreError:
            return _ephemeral("Mission not found with the provided ID.")

        if mission.status == "completed":
            return _ephemeral("This mission has already been completed.")

        dialog = {
            "trigger_id": args.trigger_id,
            "url": f"/plugins/{PLUGIN_ID}/api/v1/missions/{mission_id}/complete",
            "dialog": {
                "callback_id": "mission_complete_dialog",
                "title": "Post-Mission Report",
                "introduction_text": (
                    f"Complete mission report for: **{mission.name}** "
                    f"(Callsign: **{mission.callsign}**)"
                ),
                "elements": _dialog_elements(),
                "submit_label": "Submit Report",
                "notify_on_cancel": False,
                "state": mission_id,
            },
        }
        try:
            self.client.frontend.open_interactive_dialog(dialog)
        except PluginAPIError as err:
            log.error("error opening interactive dialog: %s", err)
            return _ephemeral("Error opening mission completion dialog. Please try again.")
        return _ephemeral("")

    def handle_mission_complete(self, mission_id, body):
        """Process a submitted report; returns ``(status_code, response_body)``."""
        try:
            request = json.loads(body)
        except (ValueError, TypeError) as err:
            log.error("error decoding dialog submission: %s", err)
            return 400, b""
        if not isinstance(request, dict):
            log.error("dialog submission is not an object")
            return 400, b""
        submission = request.get("submission") or {}
        if not isinstance(submission, dict):
            log.error("dialog submission has no valid submission map")
            return 400, b""

        if not mission_id:
            log.error("missing mission ID in URL")
            return 400, b""

        objectives = submission.get("mission_objectives_completion")
        objectives = objectives if isinstance(objectives, str) else ""
        crew_performance = submission.get("crew_performance")
        crew_performance = crew_performance if isinstance(crew_performance, str) else ""
        notable = submission.get("notable_events")
        notable_events = "" if notable is None else notable if isinstance(notable, str) else str(notable)

        duration = submission.get("mission_duration")
        if isinstance(duration, (int, float)) and not isinstance(duration, bool):
            duration_text = f"{float(duration):.1f}"
        elif isinstance(duration, str):
            duration_text = duration
        else:
            duration_text = "Unknown"
            log.warning("mission duration has unexpected type: %s", type(duration).__name__)

        try:
            mission = self.missions.get_mission(mission_id)
        except MissionStoreError:
            log.warning("mission not found: %s", request.get("state", ""))
            return 400, b"Mission not found\n"

        log.debug(
            "mission %s completion: objectives=%s crew=%s duration=%s",
            mission_id, objectives, crew_performance, duration_text,
        )

        try:
            self.missions.complete_mission(
                mission_id,
                objectives,
                notable_events,
                crew_performance,
                duration_text,
                request.get("user_id") or "",
            )
        except (MissionStoreError, BotError, PluginAPIError) as err:
            log.error("error completing mission: %s", err)
            return 200, _json_body({"error": f"Error completing mission: {err}"})

        threading.Thread(
            target=self.subscriptions.notify_subscribers_of_status_change,
            args=(mission, mission.status),
            daemon=True,
        ).start()
        return 200, _json_body({})