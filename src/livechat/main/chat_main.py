"""To interact with the live support chat via terminal,
run: python -m src.livechat.main.chat_main
"""
import asyncio
import json
import logging
import mimetypes
from pathlib import Path

import hydra
import logfire
from omegaconf import DictConfig

from src.livechat.chat.errors import SupportChatError
from src.livechat.chat.service_container import ServiceContainer
from src.livechat.models.support_chat import (
    SupportMessage,
    SupportMessageType,
    SupportSender,
)
from src.livechat.utils.formatter import format_time_ago
from src.livechat.utils.logging import setup_logging

logger = logging.getLogger(__name__)
setup_logging()
logfire.configure(send_to_logfire='if-token-present')


class CLITester:
    def __init__(self, cfg: DictConfig):
        self.cfg = cfg
        self.services = ServiceContainer(cfg)
        self.customer_id = "test_customer"
        self.user_name = "Test Customer"
        self.session = None
        self.streaming_ids = []

    async def initialize(self):
        """Async initialization method"""
        await self.services.initialize()
        self.session = self.services.create_chat_session(
            self.customer_id, self.user_name
        )
        self.session.log.subscribe(self.print_change)

    def print_change(self, event: str, message: SupportMessage) -> None:
        """Print transcript entries, streamed replies once the turn ends"""
        if event == "removed":
            print("\n[System]: (partial reply withdrawn)")
            return
        if event == "appended" and not message.content:
            self.streaming_ids.append(message.id)
            return
        if event == "updated":
            return
        self.print_message(message)

    def print_message(self, message: SupportMessage) -> None:
        role = "You" if message.sender == SupportSender.USER else "Admin"
        role = f"{role} ({format_time_ago(message.timestamp)})"
        if message.type == SupportMessageType.IMAGE:
            print(f"\n{role}: [image, {len(message.content)} chars]")
        else:
            print(f"\n{role}: {message.content}")

    async def send(self, query: str) -> None:
        self.session.set_input(query)
        await self.session.send_message()
        # Streamed replies are printed once the turn is done
        for message_id in self.streaming_ids:
            message = self.session.log.get(message_id)
            if message is not None:
                self.print_message(message)
        self.streaming_ids.clear()

    async def attach(self, path: str) -> None:
        file_path = Path(path).expanduser()
        mime_type = mimetypes.guess_type(file_path.name)[0] or "image/png"
        try:
            self.session.attach_image(file_path.read_bytes(), mime_type)
            print(f"\n[System]: {file_path.name} attached to next message")
        except SupportChatError as e:
            print(f"\n[System]: {e.message}")
        except OSError as e:
            print(f"\n[System]: Cannot read {file_path}: {e}")

    async def run(self) -> None:
        """Run the CLI tester"""
        try:
            await self.initialize()
            print("\nWelcome to the DigiMarket Live Support tester!")
            print("Commands:")
            print("- 'quit' or 'exit': End session")
            print("- 'stats': Show current session stats")
            print("- 'image <path>': Attach an image to the next message")
            print("- 'staff <text>': Reply as a staff member")
            print("- 'release': Hand the chat back to the assistant")
            for message in self.session.log:
                self.print_message(message)
            self.session.open()

            while True:
                try:
                    query = (await asyncio.to_thread(input, "\nUser: ")).strip()

                    if query.lower() in ['quit', 'exit']:
                        print("\nGoodbye!")
                        break
                    elif query.lower() == 'stats':
                        stats = self.session.get_session_stats()
                        print("\nSession Stats:",
                              json.dumps(stats, indent=2, default=str))
                    elif query.lower().startswith('image '):
                        await self.attach(query[6:].strip())
                    elif query.lower().startswith('staff '):
                        self.session.post_staff_message(query[6:])
                    elif query.lower() == 'release':
                        released = self.session.release_handoff()
                        print(f"\n[System]: released={released}")
                    elif query or self.session.image_preview:
                        await self.send(query)

                except (KeyboardInterrupt, EOFError):
                    print("\nGoodbye!")
                    break
                except Exception as e:
                    logger.error(f"Error processing query: {e}", exc_info=True)
                    print(f"\nError: {e}")
        finally:
            await self.services.cleanup()


@hydra.main(
    version_base=None,
    config_path="../../../config",
    config_name="config")
def main(cfg) -> None:

    async def async_main():
        tester = CLITester(cfg)
        await tester.run()

    asyncio.run(async_main())


if __name__ == "__main__":
    main()
