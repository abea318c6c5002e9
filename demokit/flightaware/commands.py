"""The ``/flights`` slash command: departures and subscription management."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime

from demokit.flightaware.subscriptions import FlightSubscription
from demokit.messages import CommandResponse, PluginAPIError, Post, ResponseType

log = logging.getLogger(__name__)

COMMAND_TRIGGER = "flights"
DEFAULT_FREQUENCY = "3600"
MIN_FREQUENCY = 300

_AIRPORT_HELP = "Specify airport code (e.g., SFO, LAX, JFK, RDU)"
_AIRPORT_ARG_HELP = "Airport code (e.g., SFO, LAX, JFK, RDU)"

COMMAND_SPEC = {
    "trigger": COMMAND_TRIGGER,
    "description": "FlightAware Commands",
    "display_name": "FlightAware",
    "auto_complete": True,
    "auto_complete_desc": "Get flight departures and manage subscriptions",
    "auto_complete_hint": "[command]",
    "autocomplete_data": {
        "trigger": COMMAND_TRIGGER,
        "help_text": "FlightAware Commands",
        "sub_commands": [
            {
                "trigger": "departures",
                "help_text": "Get departures from an airport",
                "arguments": [
                    {
                        "type": "StaticList",
                        "items": [{"item": "--airport", "help_text": _AIRPORT_HELP}],
                        "name": "airport",
                        "help_text": _AIRPORT_ARG_HELP,
                        "required": False,
                    }
                ],
            },
            {
                "trigger": "subscribe",
                "help_text": "Subscribe to airport departure updates",
                "arguments": [
                    {
                        "type": "StaticList",
                        "items": [
                            {"item": "--airport", "help_text": _AIRPORT_HELP},
                            {
                                "item": "--frequency",
                                "help_text": "Update frequency in seconds (minimum 300)",
                            },
                        ],
                        "name": "airport",
                        "help_text": _AIRPORT_ARG_HELP,
                        "required": False,
                    }
                ],
            },
            {
                "trigger": "unsubscribe",
                "help_text": "Unsubscribe from departure updates",
                "arguments": [
                    {
                        "type": "TextInput",
                        "hint": "[subscription id]",
                        "pattern": "^[a-zA-Z0-9_-]+$",
                        "required": True,
                    }
                ],
            },
            {
                "trigger": "list",
                "help_text": "List active subscriptions in this channel",
                "arguments": [
                    {
                        "type": "StaticList",
                        "items": [
                            {
                                "item": "--all",
                                "help_text": "(optional) Generate a list of all subscriptions on the server",
                            }
                        ],
                        "required": False,
                    }
                ],
            },
            {"trigger": "help", "help_text": "Show help information"},
        ],
    },
}

HELP_TEXT = (
    "**Flight Departures Bot Commands**\n\n"
    "**One-time Queries:**\n"
    "- `/flights departures --airport [code]` - Get recent departures from an airport\n\n"
    "**Subscription Commands:**\n"
    "- `/flights subscribe --airport [code] --frequency [seconds]` - Subscribe to airport departures\n"
    "- `/flights unsubscribe --id [subscription_id]` - Unsubscribe from airport departures\n"
    "- `/flights list` - List all subscriptions in this channel\n"
    "- `/flights list --all` - List all subscriptions on the server\n"
    "- `/flights help` - Show this help message\n\n"
    "**Examples:**\n"
    "- `/flights departures --airport SFO` - Get departures from San Francisco International\n"
    "- `/flights departures --airport RDU` - Get departures from Raleigh-Durham International\n"
    "- `/flights subscribe --airport EGLL --frequency 3600` - Subscribe to hourly updates for London Heathrow\n\n"
    "**Note:** 3-letter airport codes (like SFO, LAX, JFK, RDU) are automatically converted "
    "to 4-letter ICAO codes (KSFO, KLAX, KJFK, KRDU).\n"
    "Information includes flight callsign, airline, departure time, destination, and flight "
    "duration when available."
)

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MAX = 2**63 - 1


class CommandParseError(ValueError):
    """Raised when slash command arguments are missing or malformed."""


@dataclass
class DeparturesArgs:
    airport: str = ""


@dataclass
class SubscribeArgs:
    airport: str = ""
    frequency_str: str = DEFAULT_FREQUENCY
    update_frequency: int = 0


@dataclass
class UnsubscribeArgs:
    subscription_id: str = ""


class TableFormatter:
    """Builds a markdown table with an optional title."""

    def __init__(self, title, *args):
        self.title = title
        self.headers = list(args)
        self.rows = []

    def add_row(self, *args):
        self.rows.append(list(args))

    def build(self):
        parts = []
        if self.title:
            parts.append(self.title + "\n\n")
        parts.append("|" + "".join(f" {header} |" for header in self.headers) + "\n")
        parts.append("|" + "---|" * len(self.headers) + "\n")
        for row in self.rows:
            parts.append("|" + "".join(f" {cell} |" for cell in row) + "\n")
        return "".join(parts)


def _parse_flags(fields, names):
    """Values of the named flags; a flag at the end without a value is ignored."""
    values = {}
    tokens = iter(fields)
    for token in tokens:
        if token in names:
            value = next(tokens, None)
            if value is not None:
                values[token] = value
    return values


def _uses_simple_syntax(fields):
    return len(fields) >= 3 and not fields[2].startswith("--")


def parse_departures_command(fields):
    """Parse ``/flights departures <airport>`` or ``--airport <airport>``."""
    if len(fields) < 2:
        raise CommandParseError("insufficient arguments")
    args = DeparturesArgs()
    if _uses_simple_syntax(fields):
        args.airport = fields[2].upper()
    else:
        airport = _parse_flags(fields[2:], {"--airport"}).get("--airport", "")
        if airport:
            args.airport = airport.upper()
    if not args.airport:
        raise CommandParseError("missing required parameter: airport code")
    return args


def parse_subscribe_command(fields):
    """Parse ``/flights subscribe`` in simple or flag syntax and check the frequency."""
    if len(fields) < 3:
        raise CommandParseError("insufficient arguments")
    args = SubscribeArgs()
    if _uses_simple_syntax(fields):
        args.airport = fields[2].upper()
        if len(fields) >= 4:
            args.frequency_str = fields[3]
    else:
        flags = _parse_flags(fields[2:], {"--airport", "--frequency"})
        if flags.get("--airport"):
            args.airport = flags["--airport"].upper()
        if "--frequency" in flags:
            args.frequency_str = flags["--frequency"]
    if not args.airport:
        raise CommandParseError("missing required parameter: airport code")

    if not _INTEGER.fullmatch(args.frequency_str) or abs(int(args.frequency_str)) > _INT64_MAX:
        raise CommandParseError(
            f"invalid frequency: {args.frequency_str}. Please use seconds (e.g., 3600 for 1 hour)"
        )
    args.update_frequency = int(args.frequency_str)
    if args.update_frequency < MIN_FREQUENCY:
        raise CommandParseError("update frequency must be at least 300 seconds (5 minutes)")
    return args


def parse_unsubscribe_command(fields):
    """Parse ``/flights unsubscribe``; no ID means list the channel's subscriptions."""
    args = UnsubscribeArgs()
    if len(fields) < 3:
        return args
    if _uses_simple_syntax(fields):
        args.subscription_id = fields[2]
    else:
        args.subscription_id = _parse_flags(fields[2:], {"--id"}).get("--id", "")
    return args


def _rfc1123(value):
    if value.tzinfo is None:
        value = value.astimezone()
    return value.strftime("%a, %d %b %Y %H:%M:%S %Z")


def _error(message):
    return CommandResponse(text=message, response_type=ResponseType.EPHEMERAL)


class CommandHandler:
    """Registers ``/flights`` and answers its subcommands."""

    def __init__(self, client, flight_service, subscription_manager, message_service):
        self.client = client
        self.flight_service = flight_service
        self.subscription_manager = subscription_manager
        self.message_service = message_service
        try:
            client.slash_commands.register(COMMAND_SPEC)
        except PluginAPIError as err:
            log.error("failed to register flights command: %s", err)

    def handle(self, args):
        """Dispatch a ``/flights`` command and return the response to show."""
        words = args.command.split()
        if len(words) < 2:
            return self._help(args)
        subcommand, rest = words[1], words[2:]
        handlers = {
            "departures": self._departures,
            "subscribe": self._subscribe,
            "unsubscribe": self._unsubscribe,
            "list": self._list,
        }
        if subcommand in ("help", "--help"):
            return self._help(args)
        handler = handlers.get(subcommand)
        if handler is None:
            return _error(
                f"Unknown subcommand: {subcommand}. Use `/flights help` for available commands."
            )
        return handler(args, ["/flights", subcommand, *rest])

    def _departures(self, args, fields):
        try:
            parsed = parse_departures_command(fields)
        except CommandParseError as err:
            return _error(f"Invalid command: {err}. Use `/flights help` for usage.")
        try:
            flights = self.flight_service.get_departure_flights(parsed.airport)
        except Exception:
            log.exception("failed to fetch departure flights for %s", parsed.airport)
            return _error(
                f"Unable to retrieve flight departures for {parsed.airport}. Please try again later."
            )
        message = self.flight_service.format_flight_response(flights, parsed.airport)
        return self.message_service.send_public_response(
            args, Post(channel_id=args.channel_id, message=message)
        )

    def _subscribe(self, args, fields):
        try:
            parsed = parse_subscribe_command(fields)
        except CommandParseError as err:
            return _error(f"Invalid command: {err}. Use `/flights help` for usage.")
        subscription = FlightSubscription(
            id=f"{parsed.airport}-{args.channel_id}-{int(time.time())}",
            airport=parsed.airport,
            channel_id=args.channel_id,
            user_id=args.user_id,
            update_frequency=parsed.update_frequency,
            last_updated=datetime.now().astimezone(),
        )
        try:
            self.subscription_manager.add_subscription(subscription)
        except Exception:
            log.exception(
                "failed to create subscription for %s every %d s in channel %s",
                parsed.airport, parsed.update_frequency, args.channel_id,
            )
            return _error(
                f"Unable to create subscription for {parsed.airport}. Please try again later."
            )
        message = (
            f"✅ Subscribed to departures from **{parsed.airport}**. Updates will be sent every "
            f"{parsed.update_frequency} seconds (ID: `{subscription.id}`)."
        )
        return self.message_service.send_public_response(
            args, Post(channel_id=args.channel_id, message=message)
        )

    def _unsubscribe(self, args, fields):
        parsed = parse_unsubscribe_command(fields)
        if not parsed.subscription_id:
            subscriptions = self.subscription_manager.subscriptions_for_channel(args.channel_id)
            if not subscriptions:
                return _error("No active subscriptions found in this channel.")
            table = TableFormatter(
                "**Active Subscriptions in this Channel:**",
                "ID", "Airport", "Frequency", "Last Updated",
            )
            for sub in subscriptions:
                table.add_row(
                    f"`{sub.id}`",
                    sub.airport,
                    f"{sub.update_frequency} seconds",
                    _rfc1123(sub.last_updated),
                )
            message = (
                table.build()
                + "\nTo unsubscribe, use `/flights unsubscribe --id [subscription_id]`"
            )
            return self.message_service.send_ephemeral_response(args, message)

        subscription = self.subscription_manager.get_subscription(parsed.subscription_id)
        if subscription is None:
            return _error(f"Subscription with ID `{parsed.subscription_id}` not found.")
        if subscription.channel_id != args.channel_id:
            return _error("This subscription does not belong to this channel.")
        if not self.subscription_manager.remove_subscription(parsed.subscription_id):
            return _error("Failed to unsubscribe. Please try again.")
        message = f"✅ Unsubscribed from departures from **{subscription.airport}**."
        return self.message_service.send_public_response(
            args, Post(channel_id=args.channel_id, message=message)
        )

    def _list(self, args, fields):
        show_all = "--all" in fields[2:]
        if show_all:
            subscriptions = self.subscription_manager.all_subscriptions()
            title = "**All Active Flight Subscriptions on Server:**\n\n"
        else:
            subscriptions = self.subscription_manager.subscriptions_for_channel(args.channel_id)
            title = "**Active Flight Subscriptions in this Channel:**\n\n"

        if not subscriptions:
            where = "on the server" if show_all else "in this channel"
            return _error(f"No active subscriptions found {where}.")

        if show_all:
            table = TableFormatter(title, "ID", "Airport", "Channel", "Frequency", "Last Updated")
            for sub in subscriptions:
                table.add_row(
                    f"`{sub.id}`",
                    sub.airport,
                    f"~{self._channel_name(sub.channel_id)}",
                    f"{sub.update_frequency} seconds",
                    _rfc1123(sub.last_updated),
                )
        else:
            table = TableFormatter(title, "ID", "Airport", "Frequency", "Last Updated")
            for sub in subscriptions:
                table.add_row(
                    f"`{sub.id}`",
                    sub.airport,
                    f"{sub.update_frequency} seconds",
                    _rfc1123(sub.last_updated),
                )
        return self.message_service.send_public_response(
            args, Post(channel_id=args.channel_id, message=table.build())
        )

    def _channel_name(self, channel_id):
        try:
            return self.client.channels.get(channel_id).name
        except PluginAPIError as err:
            log.error("failed to get channel %s: %s", channel_id, err)
            return "Unknown Channel"

    def _help(self, args):
        return self.message_service.send_ephemeral_response(args, HELP_TEXT)