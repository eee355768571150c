"""Slack Web API integration: the notification sink for dispatch results."""

from dataclasses import dataclass

from cofounder.core.errors import ExternalServiceError

MAX_RESULT_LENGTH = 3000
TRUNCATION_MARKER = "\n... (truncated)"

USAGE_HINT = (
    ":x: Could not parse dispatch command. "
    "Format: `@dispatch [--track] [--repo=/path] [target:]agent: task`"
)


class SlackError(ExternalServiceError):
    """Raised when a Slack Web API call fails or Slack is not configured."""

    def __init__(self, operation: str, original: Exception | str | None = None):
        super().__init__("Slack", operation, original)


@dataclass
class SlackMessage:
    channel: str
    ts: str
    text: str


def get_client(token: str | None):
    """Get a Slack WebClient. Returns None if no token provided."""
    if not token:
        return None
    from slack_sdk import WebClient
    return WebClient(token=token)


def _require_client(token: str | None, operation: str):
    client = get_client(token)
    if not client:
        raise SlackError(operation, "Slack not configured: SLACK_BOT_TOKEN not set")
    return client


def send_message(
    token: str | None,
    channel: str,
    text: str,
    thread_ts: str | None = None,
) -> SlackMessage:
    """Send a message to a Slack channel, optionally inside a thread."""
    from slack_sdk.errors import SlackApiError

    client = _require_client(token, "chat.postMessage")
    try:
        response = client.chat_postMessage(channel=channel, text=text, thread_ts=thread_ts)
    except SlackApiError as e:
        raise SlackError("chat.postMessage", e.response["error"]) from e

    return SlackMessage(channel=response["channel"], ts=response["ts"], text=text)


def post_thread_reply(token: str | None, channel: str, thread_ts: str, text: str) -> SlackMessage:
    return send_message(token, channel, text, thread_ts=thread_ts)


def add_reaction(token: str | None, channel: str, timestamp: str, emoji: str):
    """React to a message. An already-present reaction is not an error."""
    from slack_sdk.errors import SlackApiError

    client = _require_client(token, "reactions.add")
    try:
        client.reactions_add(channel=channel, timestamp=timestamp, name=emoji)
    except SlackApiError as e:
        if e.response["error"] == "already_reacted":
            return
        raise SlackError("reactions.add", e.response["error"]) from e


def truncate_result(text: str, limit: int = MAX_RESULT_LENGTH) -> str:
    """Cap text for display. Storage always keeps the full text."""
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def format_dispatch_result(target: str, agent: str, result: str, success: bool) -> str:
    emoji = ":white_check_mark:" if success else ":x:"
    status = "completed" if success else "failed"
    return f"{emoji} *{target}:{agent}* {status}\n\n```\n{truncate_result(result)}\n```"


def format_dispatch_ack(target: str, agent: str, job_id: int) -> str:
    return f":rocket: Dispatching to *{target}:{agent}*...\n`Job ID: {job_id}`"
