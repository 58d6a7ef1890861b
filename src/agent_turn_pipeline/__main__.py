import asyncio
import json
import sys

from dotenv import load_dotenv
from loguru import logger

from agent_turn_pipeline.agents import all_agents, get_agent
from agent_turn_pipeline.app_config import AppConfig, load_json_config, parse_app_config
from agent_turn_pipeline.bootstrap import AppRuntime, bootstrap_runtime
from agent_turn_pipeline.commands import CommandRouter
from agent_turn_pipeline.console import TurnSpinner, describe_terminal
from agent_turn_pipeline.errors import ConfigurationError
from agent_turn_pipeline.relay import BlockingTransport, PushChannelTransport, TurnEvent

_HELP = """Commands:
  /help                   show this help
  /agent                  list agents
  /agent <slug>           switch agent (starts a new session)
  /new                    start a new session with the current agent
  /session                show the current session
  /session list [limit]   list recent sessions
  /session resume <id>    continue an earlier session
  /session name <title>   rename the current session
  exit | quit             leave"""


def decode_sse_frame(frame: str) -> dict | None:
    """Return the JSON envelope of an SSE frame, or None for comment frames."""
    for line in frame.splitlines():
        if line.startswith("data: "):
            return json.loads(line[len("data: "):])
    return None


class Repl:
    def __init__(self, app: AppConfig, app_runtime: AppRuntime):
        self._app = app
        self._runtime = app_runtime.runtime
        self.agent_slug = app_runtime.agent_slug
        self.session_id = app_runtime.active_session_id
        self._router = CommandRouter(
            on_help=self._help,
            on_agent=self._agent,
            on_new=self._new,
            on_session=self._session,
            on_unknown=lambda cmd: print(f"Unknown command: {cmd}. Type /help for commands."),
        )

    async def handle(self, user_input: str) -> None:
        if await self._router.try_handle(user_input):
            return
        await self.run_turn(user_input)

    async def run_turn(self, text: str) -> TurnEvent:
        spinner = TurnSpinner(prefix="assistant> ")
        streamed = False

        if self._app.stream_responses:
            push = PushChannelTransport(keepalive_seconds=self._app.keepalive_seconds)
            candidates = [push, BlockingTransport()]
        else:
            push = None
            candidates = [BlockingTransport()]

        async def consume() -> None:
            nonlocal streamed
            async for frame in push.frames():
                envelope = decode_sse_frame(frame)
                if envelope is None:
                    continue
                spinner.observe(envelope["event"])
                if envelope["event"] != "turn.chunk":
                    continue
                streamed = True
                sys.stdout.write(envelope["data"]["text"])
                sys.stdout.flush()

        consumer = asyncio.create_task(consume()) if push is not None else None
        spinner.start()
        try:
            event = await self._runtime.handle_turn(
                self.session_id,
                self.agent_slug,
                text,
                candidates,
                user_id=self._app.user_id,
                organization_id=self._app.organization_id,
            )
            if consumer is not None:
                await consumer
        finally:
            spinner.stop()
            if consumer is not None and not consumer.done():
                consumer.cancel()

        for line in describe_terminal(event.event, event.data, streamed=streamed):
            print(line)
        return event

    async def _help(self) -> None:
        print(_HELP)

    async def _agent(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        if len(parts) == 1:
            for agent in all_agents():
                marker = "*" if agent.slug == self.agent_slug else " "
                print(f" {marker} {agent.slug:<8} {agent.name}")
            return
        try:
            agent = get_agent(parts[1])
        except ConfigurationError as ex:
            print(ex.message)
            return
        self.agent_slug = agent.slug
        await self._new()
        if agent.greeting:
            print(agent.greeting)

    async def _new(self) -> None:
        self.session_id = self._runtime.open_session(
            self.agent_slug,
            user_id=self._app.user_id,
            organization_id=self._app.organization_id,
        )
        print(f"Session: {self.session_id} ({self.agent_slug})")

    async def _session(self, command: str) -> None:
        parts = command.split(maxsplit=2)
        sessions = self._runtime.sessions
        if len(parts) == 1:
            session = sessions.get_session(self.session_id)
            print(f"Session: {session.id} [{session.agent_slug}] {session.title}")
            return

        sub = parts[1]
        if sub == "list":
            limit = int(parts[2]) if len(parts) > 2 and parts[2].isdigit() else 10
            for session in sessions.list_sessions(user_id=self._app.user_id, limit=limit):
                marker = "*" if session.id == self.session_id else " "
                print(f" {marker} {session.id}  {session.agent_slug:<8} {session.updated_at[:16]}  {session.title}")
        elif sub == "resume" and len(parts) > 2:
            session = sessions.get_session(parts[2])
            if session is None:
                print(f"Session not found: {parts[2]}")
                return
            self.session_id = session.id
            self.agent_slug = session.agent_slug
            print(f"Resumed {session.id} [{session.agent_slug}] {session.title}")
            for message in sessions.list(session.id)[-4:]:
                print(f"  {message.role}> {message.content[:120]}")
        elif sub == "name" and len(parts) > 2:
            sessions.set_session_title(self.session_id, parts[2])
            print(f"Renamed to: {parts[2].strip()}")
        else:
            print("Usage: /session [list [limit] | resume <id> | name <title>]")


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    try:
        app_runtime = bootstrap_runtime(app)
    except (ConfigurationError, ValueError) as ex:
        logger.error(str(ex))
        sys.exit(1)

    repl = Repl(app, app_runtime)
    print("agent-turn-pipeline (type 'exit' to quit, '/help' for commands)")
    print(f"Agent: {repl.agent_slug}  Session: {repl.session_id}")
    if app_runtime.log_descriptions:
        print(f"Logging: {', '.join(app_runtime.log_descriptions)}")
    greeting = get_agent(repl.agent_slug).greeting
    if greeting:
        print(f"\n{greeting}")
    print()

    try:
        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                print()
                await repl.handle(trimmed)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        app_runtime.memory_store.close()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
