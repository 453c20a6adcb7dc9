#!/usr/bin/env python3
"""Drive conversations through a running formchat server.

Acts as a pure HTTP client: every turn is posted to
``/api/v1/test/simulate-message`` exactly as the webhook would enqueue it,
then the script waits for the worker to drain the queue before sending the
next turn.  Outbound prompts are not visible here; run the server with
``WHATSAPP_DRY_RUN=1`` and read its ``[DRY_RUN SEND]`` log lines.

With ``--admin-key`` the script also reports queue counters and any
dead-lettered records at the end.

Conversation file format (YAML)::

    conversations:
      - phone: "15550001111"
        name: Ann
        turns: ["START:FX1", "not-an-email", "ann@example.com", "5"]

Usage::

    # Install deps (first time only)
    uv pip install httpx rich pyyaml

    # Built-in FX1 walkthrough
    uv run python scripts/simulate_conversation.py

    # One form, answers on the command line
    uv run python scripts/simulate_conversation.py --form FX1 -a ann@example.com -a 4

    # Conversations from a file, with queue report
    uv run python scripts/simulate_conversation.py -f convo.yaml --admin-key secret
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import yaml
from rich.console import Console
from rich.table import Table

DEFAULT_CONVERSATION = {
    "phone": "15550001111",
    "name": "Demo Respondent",
    "turns": ["START:FX1", "not-an-email", "demo@example.com", "9", "4"],
}


# ---------------------------------------------------------------------------
# Conversation: one respondent's scripted turns
# ---------------------------------------------------------------------------

@dataclass
class Conversation:
    phone: str
    turns: list[str]
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        return cls(
            phone=str(data["phone"]),
            turns=[str(t) for t in data.get("turns") or []],
            name=data.get("name"),
        )


@dataclass
class ConversationResult:
    conversation: Conversation
    queued: int = 0
    message_ids: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.queued == len(self.conversation.turns)


# ---------------------------------------------------------------------------
# APIClient: thin httpx wrapper
# ---------------------------------------------------------------------------

class APIClient:
    """Async HTTP client for the formchat server API."""

    def __init__(self, base_url: str, admin_key: str | None = None, timeout: float = 30.0):
        self._base_url = base_url.rstrip("/")
        self._admin_key = admin_key
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> APIClient:
        self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    async def health_check(self) -> bool:
        """Check server health. Returns True if server is reachable."""
        try:
            resp = await self._client.get("/health")  # type: ignore[union-attr]
            return resp.status_code == 200
        except (httpx.ConnectError, httpx.TimeoutException):
            return False

    async def simulate(self, phone: str, text: str, name: str | None = None) -> dict:
        body: dict[str, Any] = {"from": phone, "text": text}
        if name:
            body["contact_name"] = name
        resp = await self._client.post("/api/v1/test/simulate-message", json=body)  # type: ignore[union-attr]
        resp.raise_for_status()
        return resp.json()

    async def queue_stats(self) -> dict | None:
        if not self._admin_key:
            return None
        resp = await self._client.get(  # type: ignore[union-attr]
            "/api/v1/queue/stats", headers={"X-Admin-Key": self._admin_key}
        )
        resp.raise_for_status()
        return resp.json()

    async def dead_letters(self, limit: int = 20) -> dict | None:
        if not self._admin_key:
            return None
        resp = await self._client.get(  # type: ignore[union-attr]
            "/api/v1/queue/dead-letters",
            params={"limit": limit},
            headers={"X-Admin-Key": self._admin_key},
        )
        resp.raise_for_status()
        return resp.json()


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

async def wait_for_drain(client: APIClient, turn_delay: float, max_wait: float) -> None:
    """Block until the main queue is empty, or sleep ``turn_delay`` without a key."""
    stats = await client.queue_stats()
    if stats is None:
        await asyncio.sleep(turn_delay)
        return
    deadline = time.monotonic() + max_wait
    while stats and stats["queue_length"] > 0 and time.monotonic() < deadline:
        await asyncio.sleep(0.25)
        stats = await client.queue_stats()


async def run_conversation(
    client: APIClient,
    convo: Conversation,
    console: Console,
    *,
    turn_delay: float,
    max_wait: float,
) -> ConversationResult:
    result = ConversationResult(conversation=convo)
    for turn in convo.turns:
        try:
            data = await client.simulate(convo.phone, turn, convo.name)
        except httpx.HTTPStatusError as exc:
            result.error = f"{exc.response.status_code}: {exc.response.text}"
            console.print(f"  [red]✗[/] {turn!r} → {result.error}")
            break
        result.queued += 1
        result.message_ids.append(data["message_id"])
        console.print(f"  [cyan]{convo.phone}[/] → {turn!r} [dim]({data['message_id']})[/]")
        await wait_for_drain(client, turn_delay, max_wait)
    return result


def load_conversations(args: argparse.Namespace) -> list[Conversation]:
    if args.file:
        with open(args.file, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return [Conversation.from_dict(c) for c in data.get("conversations") or []]
    if args.form:
        turns = [f"START:{args.form}", *(args.answer or [])]
        return [Conversation(phone=args.phone, turns=turns, name=args.name)]
    return [Conversation.from_dict(DEFAULT_CONVERSATION)]


def print_summary(console: Console, results: list[ConversationResult]) -> None:
    console.print()
    console.rule("[bold]Conversation Summary")
    table = Table(show_lines=False)
    table.add_column("#", style="dim", width=4)
    table.add_column("Phone", min_width=14)
    table.add_column("Turns", width=6)
    table.add_column("Queued", width=7)
    table.add_column("Status", width=8)
    for i, r in enumerate(results, 1):
        table.add_row(
            str(i),
            r.conversation.phone,
            str(len(r.conversation.turns)),
            str(r.queued),
            "[green]OK[/]" if r.ok else "[red]FAIL[/]",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# CLI + async main
# ---------------------------------------------------------------------------

def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Drive conversations through a running formchat server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--base-url",
        default="http://localhost:8080",
        help="Server base URL (default: http://localhost:8080)",
    )
    parser.add_argument("-f", "--file", help="YAML file with a 'conversations' list")
    parser.add_argument("--form", help="Form key to start (ignored with --file)")
    parser.add_argument(
        "-a", "--answer",
        action="append",
        help="Answer to send after START (repeatable, in order)",
    )
    parser.add_argument("--phone", default="15550001111", help="Respondent phone digits")
    parser.add_argument("--name", default=None, help="Respondent contact name")
    parser.add_argument(
        "--admin-key",
        default=None,
        help="X-Admin-Key; enables queue draining and the dead-letter report",
    )
    parser.add_argument(
        "--turn-delay",
        type=float, default=3.0,
        help="Seconds between turns when no admin key is given (default: 3)",
    )
    parser.add_argument(
        "--max-wait",
        type=float, default=30.0,
        help="Max seconds to wait for the queue to drain per turn (default: 30)",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    console = Console()
    conversations = load_conversations(args)
    if not conversations:
        console.print("[red]No conversations to run.[/]")
        sys.exit(1)

    results: list[ConversationResult] = []
    async with APIClient(args.base_url, admin_key=args.admin_key) as client:
        if not await client.health_check():
            console.print(
                f"[red]Server at {args.base_url} is not healthy. "
                f"Is the server running?[/]"
            )
            sys.exit(1)
        console.print(f"[green]Server health check passed[/] ({args.base_url})")

        for i, convo in enumerate(conversations, 1):
            console.rule(f"[bold]Conversation {i}/{len(conversations)}")
            results.append(
                await run_conversation(
                    client, convo, console,
                    turn_delay=args.turn_delay, max_wait=args.max_wait,
                )
            )

        stats = await client.queue_stats()
        dead = await client.dead_letters()

    print_summary(console, results)
    if stats is not None:
        console.print(
            f"  processed={stats['processed']} failed={stats['failed']} "
            f"dead_lettered={stats['dead_lettered']} retry_length={stats['retry_length']}"
        )
    if dead and dead["total"]:
        console.rule("[red]Dead letters")
        for item in dead["items"]:
            console.print(f"  {item.get('message_id', '?')}: {item.get('error')}")

    if not all(r.ok for r in results):
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
