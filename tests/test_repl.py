import asyncio
import io
import shutil
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from uuid import uuid4

from agent_turn_pipeline.__main__ import Repl, decode_sse_frame
from agent_turn_pipeline.app_config import parse_app_config
from agent_turn_pipeline.bootstrap import bootstrap_runtime
from agent_turn_pipeline.relay.events import turn_chunk
from tests.fakes import ScriptedProvider

PROJECT_ROOT = Path(__file__).resolve().parents[1]

_PROVIDERS = {"default": {"Provider": "anthropic", "Model": "claude-test", "ApiKeyEnv": "TEST_ANTHROPIC_KEY"}}


class DecodeSseFrameTests(unittest.TestCase):
    def test_decodes_data_line(self) -> None:
        envelope = decode_sse_frame(turn_chunk("s", "t", "Hi").to_sse())
        self.assertEqual("turn.chunk", envelope["event"])
        self.assertEqual("Hi", envelope["data"]["text"])

    def test_keepalive_has_no_envelope(self) -> None:
        self.assertIsNone(decode_sse_frame(": keepalive\n\n"))


class BootstrapAndReplTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"repl-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        self.providers: list[ScriptedProvider] = []
        self._runtimes = []

    def tearDown(self) -> None:
        for app_runtime in self._runtimes:
            app_runtime.memory_store.close()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def _bootstrap(self, **overrides):
        values = {
            "Agent": "relay",
            "MemoryDbPath": str(self._tmp_dir / "sessions.db"),
            "Providers": _PROVIDERS,
            "LogConsumers": [],
        }
        values.update(overrides)
        app = parse_app_config(values)
        app_runtime = bootstrap_runtime(
            app,
            environ={"TEST_ANTHROPIC_KEY": "sk-test"},
            provider_factory=lambda config: self.providers.pop(0),
        )
        self._runtimes.append(app_runtime)
        return app, app_runtime

    def test_bootstrap_opens_a_session_for_the_configured_agent(self) -> None:
        _, app_runtime = self._bootstrap()

        session = app_runtime.runtime.sessions.get_session(app_runtime.active_session_id)

        self.assertEqual("relay", app_runtime.agent_slug)
        self.assertEqual("relay", session.agent_slug)
        self.assertEqual([], app_runtime.log_descriptions)

    def test_resume_takes_the_agent_of_the_stored_session(self) -> None:
        _, first = self._bootstrap(Agent="parity")
        _, resumed = self._bootstrap(Agent="relay", ResumeSessionId=first.active_session_id)

        self.assertEqual(first.active_session_id, resumed.active_session_id)
        self.assertEqual("parity", resumed.agent_slug)

    def test_resume_of_unknown_session_fails(self) -> None:
        with self.assertRaises(ValueError):
            self._bootstrap(ResumeSessionId="missing")

    def test_streamed_turn_prints_chunks_and_payload_notice(self) -> None:
        self.providers.append(
            ScriptedProvider(["Got it. ", "One task found.", '\n---TASK_JSON---\n{"title": "Send Q3 pack"}'])
        )
        app, app_runtime = self._bootstrap()
        repl = Repl(app, app_runtime)
        out = io.StringIO()

        with redirect_stdout(out):
            event = asyncio.run(repl.run_turn("Extract the task"))

        self.assertEqual("turn.complete", event.event)
        self.assertIn("Got it. One task found.", out.getvalue())
        self.assertIn("[task updated] Send Q3 pack", out.getvalue())

    def test_blocking_turn_prints_conversational_text(self) -> None:
        self.providers.append(ScriptedProvider(["Nothing to extract here."]))
        app, app_runtime = self._bootstrap(StreamResponses=False)
        repl = Repl(app, app_runtime)
        out = io.StringIO()

        with redirect_stdout(out):
            asyncio.run(repl.run_turn("hello"))

        self.assertIn("Nothing to extract here.", out.getvalue())

    def test_agent_command_switches_agent_and_session(self) -> None:
        app, app_runtime = self._bootstrap()
        repl = Repl(app, app_runtime)
        original_session = repl.session_id
        out = io.StringIO()

        with redirect_stdout(out):
            asyncio.run(repl.handle("/agent cadence"))

        self.assertEqual("cadence", repl.agent_slug)
        self.assertNotEqual(original_session, repl.session_id)
        self.assertIn("I'm Cadence", out.getvalue())

    def test_session_name_command(self) -> None:
        app, app_runtime = self._bootstrap()
        repl = Repl(app, app_runtime)

        with redirect_stdout(io.StringIO()):
            asyncio.run(repl.handle("/session name Inbox triage"))

        self.assertEqual("Inbox triage", app_runtime.runtime.sessions.get_session(repl.session_id).title)


if __name__ == "__main__":
    unittest.main()
