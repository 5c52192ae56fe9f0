"""CLI demonstration of task dispatch and realtime delivery."""
from __future__ import annotations

import asyncio

from artomart.config import Config
from artomart.observability import configure_logging
from artomart.runtime import Runtime


async def main() -> None:
    config = Config.from_env()
    configure_logging("WARNING")
    runtime = Runtime.from_config(config)
    await runtime.start()

    session_id = "demo-session"
    buffer = runtime.channel.connect(session_id)
    try:
        chat = runtime.dispatcher.submit(
            "productRecommendation", "chat", {"message": "Show me blue pottery from Jaipur"}, session_id
        )
        stock = runtime.dispatcher.submit(
            "orderProcessing",
            "checkLowStock",
            {
                "products": [
                    {"productId": "p-1", "name": "Handmade Bowl", "stock": 2, "threshold": 5},
                    {"productId": "p-2", "name": "Woven Scarf", "stock": 9, "threshold": 3},
                ]
            },
            session_id,
        )
        print(f"Submitted {chat.task_id} and {stock.task_id}")

        pending = {chat.task_id, stock.task_id}
        while pending:
            envelope = await asyncio.wait_for(buffer.get(), timeout=config.task_deadline_seconds + 5)
            if envelope is None:
                break
            print(f"[{envelope.task_id} #{envelope.seq}] {envelope.type.value}: {envelope.payload}")
            if envelope.type.is_terminal:
                pending.discard(envelope.task_id)
    finally:
        runtime.channel.disconnect(session_id, buffer)
        await runtime.shutdown()
    print("Runtime stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
