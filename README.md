# demokit

Bot services for a chat server, written as plain Python objects that work
against a client object you supply. There are two parts:

* **FlightAware** (`demokit.flightaware`) answers `/flights` commands with
  markdown tables of recent departures from an airport and keeps channel
  subscriptions that post fresh departures on a schedule.
* **Mission Operations** (`demokit.missionops`) stores missions and their
  status (`stalled`, `in-air`, `completed`, `cancelled`), takes
  post-mission reports, and sends status updates to subscribed channels.

The package has no dependencies outside the standard library.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## The client

Every service talks to the chat server through a `client` object you
provide. Failed calls are expected to raise `demokit.messages.PluginAPIError`.
The members used are:

* `client.kv.get(key)` returning `bytes` or `None`, `client.kv.set(key, data)`
  returning `True` on success, `client.kv.delete(key)`
* `client.posts.create_post(post)`, `client.posts.send_ephemeral_post(user_id, post)`
* `client.channels.get(channel_id)`, `get_direct(user_a, user_b)`,
  `update(channel)`, `add_member(channel_id, user_id)`
* `client.users.get(user_id)`, `create_access_token(user_id, description)`
* `client.teams.get_member(team_id, user_id)`, `create_member(team_id, user_id)`
* `client.bots.ensure_bot(username=..., display_name=..., description=...)`
  returning the bot's user ID
* `client.plugins.http(method, url, body, headers)` returning an object with
  `status_code` and `body`
* `client.frontend.open_interactive_dialog(dialog)`
* `client.slash_commands.register(spec)`

Messages and command results use the dataclasses in `demokit.messages`:
`Post`, `CommandArgs`, `CommandResponse` and the `ResponseType` enum.
`MessageService(client, bot_user_id)` posts on behalf of the bot.

## FlightAware

```python
from demokit.flightaware.commands import CommandHandler
from demokit.flightaware.flight import FlightService
from demokit.flightaware.subscriptions import SubscriptionManager
from demokit.messages import CommandArgs, MessageService

messages = MessageService(client, bot_user_id)
flights = FlightService("/path/to/bundle")
subscriptions = SubscriptionManager(client, flights, messages)
handler = CommandHandler(client, flights, subscriptions, messages)

response = handler.handle(
    CommandArgs(command="/flights departures SFO", channel_id="town-square", user_id="u1")
)
```

`FlightService(bundle_path, rng=None)` reads `assets/flights.json` under the
bundle path: a JSON list of flight objects with keys such as `icao24`,
`callsign`, `firstSeen`, `lastSeen` and `estArrivalAirport`. For any airport
it picks three to eight of these at random and gives them departure times
within the last six hours. Pass a `random.Random` as `rng` for repeatable
results. A missing or malformed file raises `FlightDataError`.

Commands answered by `CommandHandler.handle`:

* `/flights departures [code]` or `--airport [code]`: recent departures
* `/flights subscribe [code] [seconds]` or `--airport [code] --frequency [seconds]`:
  periodic updates (at least 300 seconds; default 3600)
* `/flights unsubscribe [id]` or `--id [id]`; with no ID, the channel's
  subscriptions are listed
* `/flights list` and `/flights list --all`
* `/flights help`

Three-letter codes for common airports (SFO, LAX, JFK, ORD, DFW, LAS, BOS,
DEN, RDU, LHR) become their ICAO codes; see `icao_code`. `airline_name`
maps a callsign prefix to an airline.

The parsers `parse_departures_command`, `parse_subscribe_command` and
`parse_unsubscribe_command` take the command split into words and raise
`CommandParseError` on bad input. `TableFormatter` builds the markdown
tables.

The flight `SubscriptionManager` keeps all subscriptions under the KV key
`flight_subscriptions`, starts a background thread per subscription (also
for those already stored when it is created), and removes a subscription
whose channel no longer exists, sending its owner a direct message.
`stop_all()` stops the threads.

## Mission Operations

```python
from demokit.missionops.bot import MissionBot
from demokit.missionops.complete_command import CompleteCommandMixin
from demokit.missionops.missions import MissionManager
from demokit.missionops.subscription_commands import SubscriptionCommandsMixin
from demokit.missionops.subscriptions import SubscriptionManager


class MissionCommands(CompleteCommandMixin, SubscriptionCommandsMixin):
    def __init__(self, client, missions, bot, subscriptions):
        self.client = client
        self.missions = missions
        self.bot = bot
        self.subscriptions = subscriptions


bot = MissionBot(client)
missions = MissionManager(client, bot)
subscriptions = SubscriptionManager(client, bot, missions)
commands = MissionCommands(client, missions, bot, subscriptions)
```

* `MissionBot` ensures the `missionops` bot account and its access token,
  posts messages (`post_message`) and joins teams (`ensure_team_member`);
  failures raise `BotError`.
* `MissionManager` stores `Mission` records as JSON in the KV store, finds
  them by ID, channel or status, updates status, files mission channels
  under "Active Missions" through the playbooks service, and
  `complete_mission` posts the post-mission report. Missing missions raise
  `MissionNotFoundError`, store failures `MissionStoreError`.
* The mission `SubscriptionManager` stores `MissionSubscription` records,
  runs their update jobs (`start_subscription_job`, `stop_subscription_job`,
  `restart_subscriptions`) and alerts subscribed channels of status changes
  (`notify_subscribers_of_status_change`).
* `CompleteCommandMixin.execute_complete(args)` handles `/mission complete
  [--id mission_id]` by opening the report dialog;
  `handle_mission_complete(mission_id, body)` takes the submitted dialog
  JSON and returns `(status_code, response_body)`.
* `SubscriptionCommandsMixin` handles
  `/mission subscribe --type [status1,status2|all] --frequency [seconds]`,
  `/mission subscriptions` and `/mission unsubscribe --id [subscription_id]`
  through `execute_subscribe`, `execute_subscriptions` and
  `execute_unsubscribe`.

`demokit.missionops.args.parse_args` turns `--flag value` words into a dict,
and `demokit.missionops.models.status_emoji` gives the marker shown for a
status.

## What is not included

* There is no `/mission` dispatcher: creating missions (`start`), listing
  them, changing status from a command and the `/mission` help text are not
  provided, though `MissionManager` offers the storage calls they would use.
* There are no plugin lifecycle objects that activate or deactivate the
  services, load plugin configuration or route HTTP requests; you construct
  the services yourself and pass dialog submissions to
  `handle_mission_complete` directly.
* No chat-server client is included, and no sample `flights.json` is
  bundled.