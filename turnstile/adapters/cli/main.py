"""CLI JSON-lines adapter — reads wire frames from a file or stdin, prints canonical events as JSON."""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Iterable

from turnstile import create_runtime
from turnstile.engine.runtime import ConversationRuntime


async def run_cli(lines: Iterable[str], runtime: ConversationRuntime | None = None) -> dict:
    runtime = runtime or create_runtime()
    try:
        async for event in runtime.handle(line for line in lines if line.strip()):
            print(json.dumps(event.model_dump(mode="json"), default=str), flush=True)

        summary = {}
        for session_id in await runtime.sessions():
            responses = await runtime.responses(session_id)
            visible = await runtime.visible_messages(session_id)
            correlation = await runtime.interactions(session_id)
            summary[session_id] = {
                "responses": [
                    {"message_ids": [m.id for m in r.messages], "open": r.is_open}
                    for r in responses
                ],
                "visible_message_ids": [m.id for m in visible],
                "interactions": [
                    {"id": i.call.id, "name": i.call.name, "status": i.status.value}
                    for i in correlation.interactions
                ],
                "standalone_calls": [c.name for c in correlation.standalone_calls],
                "pending_approvals": [p.tool_use_id for p in runtime.pending_approvals(session_id)],
            }
        print(json.dumps({"summary": summary}, default=str), flush=True)
        return summary
    finally:
        await runtime.aclose()


def main() -> None:
    if len(sys.argv) > 1:
        try:
            with open(sys.argv[1]) as f:
                lines = f.readlines()
        except OSError as exc:
            print(f"Cannot read {sys.argv[1]}: {exc}", file=sys.stderr)
            sys.exit(1)
    else:
        if sys.stdin.isatty():
            print("Usage: turnstile-cli <frames.jsonl>  OR  cat frames.jsonl | turnstile-cli", file=sys.stderr)
            sys.exit(1)
        lines = sys.stdin.readlines()

    asyncio.run(run_cli(lines))


if __name__ == "__main__":
    main()
