import logging
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

import settings
from utils.logs import ratelimited_log

logger = logging.getLogger("ideacollab.slack")


class SlackBot:
    """Slack bot service for operational alerts"""

    def __init__(self, channel: str = "#ideacollab-ops"):
        self.token = settings.SLACK_TOKEN
        self.channel = channel
        if self.token:
            self.client = WebClient(token=self.token)
        else:
            self.client = None

    def send_message(self, text: str, channel: str | None = None) -> bool:
        target_channel = channel or self.channel
        if not self.client:
            logger.info(text)
            return False

        try:
            response = self.client.chat_postMessage(channel=target_channel, text=text)

            if response["ok"]:
                return True
            else:
                logger.error(
                    f"Failed to send message: {response.get('error', 'Unknown error')}"
                )
                return False

        except SlackApiError as e:
            logger.error(f"Slack API error: {e.response['error']}")
            return False

    def alert(self, text: str, every_seconds: int = 60 * 60):
        """Send a message, the same text at most once per `every_seconds`"""
        ratelimited_log(every_seconds)(self.send_message, text)


slack = SlackBot()
