import asyncio
import unittest

from agent_turn_pipeline.commands import CommandRouter


class CommandRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.calls: list[tuple[str, str]] = []

        async def on_help() -> None:
            self.calls.append(("help", ""))

        async def on_agent(command: str) -> None:
            self.calls.append(("agent", command))

        async def on_new() -> None:
            self.calls.append(("new", ""))

        async def on_session(command: str) -> None:
            self.calls.append(("session", command))

        def on_unknown(command: str) -> None:
            self.calls.append(("unknown", command))

        self.router = CommandRouter(
            on_help=on_help,
            on_agent=on_agent,
            on_new=on_new,
            on_session=on_session,
            on_unknown=on_unknown,
        )

    def test_plain_text_is_not_a_command(self) -> None:
        self.assertFalse(asyncio.run(self.router.try_handle("Build a workflow")))
        self.assertEqual([], self.calls)

    def test_routes_commands(self) -> None:
        for text in (" /help ", "/new", "/agent relay", "/session resume abc", "/bogus"):
            self.assertTrue(asyncio.run(self.router.try_handle(text)))

        self.assertEqual(
            [
                ("help", ""),
                ("new", ""),
                ("agent", "/agent relay"),
                ("session", "/session resume abc"),
                ("unknown", "/bogus"),
            ],
            self.calls,
        )


if __name__ == "__main__":
    unittest.main()
