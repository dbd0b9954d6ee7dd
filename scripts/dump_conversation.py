import asyncio
import json
import os
import sys

CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(CURRENT_DIR)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from app.db import close_store_connection, connect_to_store  # noqa: E402
from app.utils.messaging_service import MessagingService  # noqa: E402


async def main(conversation_id: int) -> None:
    store = await connect_to_store()
    try:
        messaging = MessagingService(store)
        conversation, _ = await messaging.get_conversation(conversation_id)
        messages = await messaging.get_messages(conversation_id)
        print(f"Conversation {conversation_id}: {conversation['status']}, {len(messages)} messages")
        print(json.dumps({"conversation": conversation, "messages": messages}, default=str, indent=2))
    finally:
        await close_store_connection()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/dump_conversation.py <conversation_id>")
        sys.exit(1)
    asyncio.run(main(int(sys.argv[1])))
