"""Chat message types and a service that posts them as the bot user."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

log = logging.getLogger(__name__)


class ResponseType(str, Enum):
    """Visibility of a slash command response."""

    EPHEMERAL = "ephemeral"
    IN_CHANNEL = "in_channel"


class PluginAPIError(Exception):
    """Raised by the chat server client when a call fails."""


@dataclass
class Post:
    """A message in a channel."""

    channel_id: str = ""
    message: str = ""
    user_id: str = ""
    id: str = ""
    file_ids: list[str] = field(default_factory=list)


@dataclass
class CommandArgs:
    """The context a slash command was run in."""

    command: str = ""
    channel_id: str = ""
    user_id: str = ""
    team_id: str = ""
    trigger_id: str = ""


@dataclass
class CommandResponse:
    """The reply the server shows for a slash command."""

    text: str = ""
    response_type: ResponseType = ResponseType.EPHEMERAL


class MessageService:
    """Posts messages to channels on behalf of the bot user."""

    def __init__(self, client, bot_user_id):
        self.client = client
        self.bot_user_id = bot_user_id

    def send_ephemeral_response(self, args, message):
        """Show a message only to the user who ran the command."""
        post = Post(channel_id=args.channel_id, message=message)
        return self._send_response(post, args.user_id, ephemeral=True)

    def send_public_response(self, args, post):
        """Post a message visible to everyone in the channel."""
        return self._send_response(post, args.user_id, ephemeral=False)

    def send_public_message(self, channel_id, message):
        """Create a bot post in a channel; client failures propagate."""
        post = Post(channel_id=channel_id, message=message, user_id=self.bot_user_id)
        self.client.posts.create_post(post)
        return post

    def _send_response(self, post, user_id, *, ephemeral):
        post.user_id = self.bot_user_id
        try:
            if ephemeral:
                self.client.posts.send_ephemeral_post(user_id, post)
            else:
                self.client.posts.create_post(post)
        except PluginAPIError as err:
            log.warning("failed to send bot post to channel %s: %s", post.channel_id, err)
        return CommandResponse(text="", response_type=ResponseType.EPHEMERAL)