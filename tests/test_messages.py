import pytest

from demokit.messages import (
    CommandArgs,
    CommandResponse,
    MessageService,
    PluginAPIError,
    Post,
    ResponseType,
)


class FakePosts:
    def __init__(self, fail=False):
        self.fail = fail
        self.created = []
        self.ephemeral = []

    def create_post(self, post):
        if self.fail:
            raise PluginAPIError("boom")
        self.created.append(post)

    def send_ephemeral_post(self, user_id, post):
        if self.fail:
            raise PluginAPIError("boom")
        self.ephemeral.append((user_id, post))


class FakeClient:
    def __init__(self, fail=False):
        self.posts = FakePosts(fail)


def test_ephemeral_response_goes_to_user_as_bot():
    client = FakeClient()
    service = MessageService(client, "bot1")
    args = CommandArgs(channel_id="chan", user_id="user")
    response = service.send_ephemeral_response(args, "hello")
    assert response == CommandResponse(text="", response_type=ResponseType.EPHEMERAL)
    assert response.response_type.value == "ephemeral"
    user_id, post = client.posts.ephemeral[0]
    assert user_id == "user"
    assert (post.channel_id, post.message, post.user_id) == ("chan", "hello", "bot1")
    assert client.posts.created == []


def test_public_response_creates_post_as_bot():
    client = FakeClient()
    service = MessageService(client, "bot1")
    post = Post(channel_id="chan", message="hi")
    response = service.send_public_response(CommandArgs(channel_id="chan", user_id="u"), post)
    assert response.text == ""
    assert client.posts.created == [Post(channel_id="chan", message="hi", user_id="bot1")]


def test_public_response_ignores_client_failure():
    service = MessageService(FakeClient(fail=True), "bot1")
    response = service.send_public_response(CommandArgs(), Post(message="x"))
    assert response.response_type is ResponseType.EPHEMERAL


def test_public_message_posts_as_bot():
    client = FakeClient()
    service = MessageService(client, "bot1")
    post = service.send_public_message("chan", "update")
    assert client.posts.created == [post]
    assert post.user_id == "bot1"


def test_public_message_failure_raises():
    service = MessageService(FakeClient(fail=True), "bot1")
    with pytest.raises(PluginAPIError):
        service.send_public_message("chan", "update")