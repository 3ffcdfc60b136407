#!/usr/bin/env python3
"""Interactive terminal client for the ai-chat function.

Usage:
    export SUPABASE_URL=... SUPABASE_ANON_KEY=... CHAT_ACCESS_TOKEN=...
    python scripts/chat_repl.py

Commands:
    /models            list active models
    /use <n>           switch to model n
    /retry             retry the last failed or stopped reply
    /regen             regenerate the last reply
    /clear             clear history for the selected model
    /quit              exit
Ctrl-C stops any in-flight generation and exits.
"""

import asyncio
import os
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

from app.assistant.entity.message import MessageRole
from app.assistant.service.chat_service import AIChatService
from app.assistant.service.model_registry import ModelRegistry
from app.assistant.service.stream_controller import ChatController, ChatState, HapticThrottle
from app.core.config import settings
from app.core.logger import get_logger
from app.llm.service.stream_decoder import MalformedChunkPolicy
from pkg.supabase_rest.client import SupabaseRestClient

logger = get_logger("chat-repl")


class TerminalPrinter:
    """Prints the streaming reply incrementally as the controller state changes."""

    def __init__(self):
        self.printed = {}

    def __call__(self, state: ChatState) -> None:
        for message in state.messages:
            if message.role != MessageRole.ASSISTANT:
                continue
            already = self.printed.get(message.id, 0)
            if len(message.content) > already:
                sys.stdout.write(message.content[already:])
                sys.stdout.flush()
                self.printed[message.id] = len(message.content)


async def _wait(controller: ChatController) -> None:
    try:
        await controller.wait_for_generation()
    except asyncio.CancelledError:
        await controller.stop_generation()
        raise
    print()
    last = controller.state.messages[-1] if controller.state.messages else None
    if last is not None and last.state.kind == "failed":
        print(f"[failed] {last.state.reason}")
    if controller.state.usage_metrics is not None:
        print(f"[usage] total_tokens={controller.state.usage_metrics.total_tokens}")


def _print_models(controller: ChatController) -> None:
    for index, option in enumerate(controller.state.models):
        marker = "*" if option == controller.state.selected_model else " "
        print(f"{marker} {index}: {option.display_name} ({option.model_identifier})")


async def main() -> int:
    load_dotenv()
    if not settings.SUPABASE_URL or not settings.SUPABASE_ANON_KEY:
        print("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
        return 1

    access_token = os.getenv("CHAT_ACCESS_TOKEN")
    rest_client = SupabaseRestClient(
        logger, settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY, timeout=settings.CLIENT_TIMEOUT_S
    )
    controller = ChatController(
        AIChatService(
            rest_client,
            function_name=settings.CHAT_FUNCTION_NAME,
            upload_bucket=settings.CHAT_UPLOAD_BUCKET,
            upload_prefix=settings.CHAT_UPLOAD_PREFIX,
            malformed_policy=MalformedChunkPolicy(settings.MALFORMED_CHUNK_POLICY),
        ),
        ModelRegistry(rest_client),
        access_token_provider=lambda: access_token,
        context_window=settings.CHAT_CONTEXT_WINDOW,
        haptics=HapticThrottle(min_interval=settings.HAPTIC_MIN_INTERVAL_S),
    )
    controller.subscribe(TerminalPrinter())

    try:
        await controller.initialize()
        if controller.state.service_error:
            print(f"[error] {controller.state.service_error}")
        _print_models(controller)

        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, input, "> ")
            line = line.strip()
            if not line:
                continue
            if line == "/quit":
                break
            if line == "/models":
                await controller.load_models(force=True)
                _print_models(controller)
                continue
            if line.startswith("/use "):
                try:
                    option = controller.state.models[int(line.split()[1])]
                except (ValueError, IndexError):
                    print("unknown model")
                    continue
                await controller.select_model(option)
                continue
            if line == "/clear":
                await controller.clear_history()
                continue

            if line == "/retry":
                started = await controller.retry_last_request()
            elif line == "/regen":
                started = await controller.regenerate_response()
            else:
                started = await controller.send_message(line)
            if not started:
                print(f"[not sent] {controller.state.service_error or 'nothing to send'}")
                continue
            await _wait(controller)
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await controller.reset_for_sign_out()
        await rest_client.close()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
