"""The Mission Ops bot account."""

from __future__ import annotations

import logging

from demokit.messages import PluginAPIError, Post

log = logging.getLogger(__name__)

BOT_TOKEN_KEY = "bot_token"


class BotError(Exception):
    """Raised when the bot account cannot do what was asked."""


class MissionBot:
    """Ensures the bot account exists and posts on its behalf."""

    def __init__(self, client):
        self.client = client
        self.bundle_path = ""
        try:
            self.user_id = client.bots.ensure_bot(
                username="missionops",
                display_name="Mission Ops Bot",
                description="A bot for managing mission operations.",
            )
        except PluginAPIError as err:
            raise BotError("failed to ensure bot user") from err
        self._token = ""
        self._fetch_or_create_token()

    @property
    def token(self):
        """The bot's access token, fetched again if it was lost."""
        if not self._token:
            try:
                self._fetch_or_create_token()
            except BotError:
                log.exception("error fetching bot token")
        return self._token

    def post_message(self, channel_id, message):
        """Post a message from the bot to a channel."""
        post = Post(user_id=self.user_id, channel_id=channel_id, message=message)
        try:
            self.client.posts.create_post(post)
        except PluginAPIError as err:
            raise BotError("failed to create post") from err
        return post

    def ensure_team_member(self, team_id):
        """Add the bot to the team unless it is already a member."""
        if not team_id:
            raise BotError("team ID is required")
        try:
            self.client.teams.get_member(team_id, self.user_id)
        except PluginAPIError:
            log.info("bot is not in team %s, adding it now", team_id)
            try:
                self.client.teams.create_member(team_id, self.user_id)
            except PluginAPIError as err:
                raise BotError("failed to add bot to team") from err
            log.info("added bot to team %s", team_id)

    def _fetch_or_create_token(self):
        try:
            stored = self.client.kv.get(BOT_TOKEN_KEY)
        except PluginAPIError as err:
            raise BotError("failed to get bot token from KV store") from err
        if stored is not None:
            self._token = stored.decode() if isinstance(stored, bytes) else str(stored)
            return

        try:
            created = self.client.users.create_access_token(self.user_id, "Mission Ops Bot Token")
        except PluginAPIError as err:
            raise BotError("failed to create bot token") from err

        try:
            saved = self.client.kv.set(BOT_TOKEN_KEY, created.encode())
        except PluginAPIError as err:
            raise BotError("failed to set bot token in KV store") from err
        if not saved:
            raise BotError("failed to set bot token in KV store")
        self._token = created