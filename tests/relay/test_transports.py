import asyncio
import unittest

from agent_turn_pipeline.errors import TransportError
from agent_turn_pipeline.relay import (
    KEEPALIVE_FRAME,
    BlockingTransport,
    PushChannelTransport,
    SocketTransport,
    Transport,
)
from agent_turn_pipeline.relay.events import turn_chunk, turn_complete, turn_start
from tests.fakes import FakeSocket


class PushChannelTransportTests(unittest.TestCase):
    def test_frames_end_after_close(self) -> None:
        async def run() -> list[str]:
            transport = PushChannelTransport()
            frames: list[str] = []

            async def consume() -> None:
                async for frame in transport.frames():
                    frames.append(frame)

            consumer = asyncio.create_task(consume())
            await transport.open()
            await transport.send(turn_start("s", "t", "hi"))
            await transport.send(turn_chunk("s", "t", "Hello"))
            await transport.close()
            await consumer
            return frames

        frames = asyncio.run(run())

        self.assertEqual(2, len(frames))
        self.assertTrue(frames[0].startswith("event: turn.start\n"))
        self.assertTrue(frames[1].startswith("event: turn.chunk\n"))

    def test_idle_channel_emits_keepalive(self) -> None:
        async def run() -> str:
            transport = PushChannelTransport(keepalive_seconds=0.01)
            stream = transport.frames()
            frame = await stream.__anext__()
            await transport.close()
            await stream.aclose()
            return frame

        self.assertEqual(KEEPALIVE_FRAME, asyncio.run(run()))

    def test_consumer_leaving_early_cancels(self) -> None:
        async def run() -> PushChannelTransport:
            transport = PushChannelTransport()
            stream = transport.frames()
            await transport.send(turn_start("s", "t", "hi"))
            await stream.__anext__()
            await stream.aclose()
            return transport

        transport = asyncio.run(run())

        self.assertTrue(transport.cancelled.is_set())
        self.assertFalse(transport.writable)
        with self.assertRaises(TransportError):
            asyncio.run(transport.send(turn_chunk("s", "t", "late")))

    def test_unavailable_channel_refuses_to_open(self) -> None:
        transport = PushChannelTransport(available=False)

        self.assertFalse(transport.available)
        with self.assertRaises(TransportError):
            asyncio.run(transport.open())


class SocketTransportTests(unittest.TestCase):
    def test_sends_json_frames(self) -> None:
        socket = FakeSocket()

        async def run() -> None:
            transport = SocketTransport(socket)
            await transport.open()
            await transport.send(turn_start("s", "t", "hi"))
            await transport.send(turn_chunk("s", "t", "Hello"))
            await transport.close()

        asyncio.run(run())

        self.assertTrue(socket.accepted)
        self.assertEqual(["turn.start", "turn.chunk"], socket.event_names)
        self.assertEqual("t", socket.sent[0]["turnId"])

    def test_cancel_frame_sets_cancelled(self) -> None:
        for frame in ('{"type": "cancel"}', "cancel"):
            with self.subTest(frame=frame):
                socket = FakeSocket()

                async def run() -> bool:
                    transport = SocketTransport(socket)
                    await transport.open()
                    socket.client_says('{"type": "ping"}')
                    socket.client_says(frame)
                    await asyncio.wait_for(transport.cancelled.wait(), timeout=1.0)
                    await transport.close()
                    return transport.writable

                self.assertFalse(asyncio.run(run()))

    def test_client_hangup_cancels(self) -> None:
        socket = FakeSocket()

        async def run() -> SocketTransport:
            transport = SocketTransport(socket)
            await transport.open()
            socket.client_hangs_up()
            await asyncio.wait_for(transport.cancelled.wait(), timeout=1.0)
            await transport.close()
            return transport

        transport = asyncio.run(run())

        self.assertFalse(transport.available)

    def test_failed_handshake_raises_transport_error(self) -> None:
        with self.assertRaises(TransportError):
            asyncio.run(SocketTransport(FakeSocket(fail_accept=True)).open())

    def test_failed_write_raises_transport_error(self) -> None:
        socket = FakeSocket(fail_send_after=0)

        async def run() -> SocketTransport:
            transport = SocketTransport(socket)
            await transport.open()
            try:
                await transport.send(turn_start("s", "t", "hi"))
            finally:
                await transport.close()
            return transport

        with self.assertRaises(TransportError):
            asyncio.run(run())

    def test_failed_write_is_not_a_cancel(self) -> None:
        socket = FakeSocket(fail_send_after=0)

        async def run() -> SocketTransport:
            transport = SocketTransport(socket)
            await transport.open()
            with self.assertRaises(TransportError):
                await transport.send(turn_start("s", "t", "hi"))
            transport.disconnect()
            await transport.close()
            return transport

        transport = asyncio.run(run())

        self.assertFalse(transport.writable)
        self.assertFalse(transport.cancelled.is_set())

    def test_missing_connection_is_unavailable(self) -> None:
        self.assertFalse(SocketTransport(None).available)


class BlockingTransportTests(unittest.TestCase):
    def test_collects_events_and_exposes_terminal_one(self) -> None:
        transport = BlockingTransport()

        async def run() -> None:
            await transport.open()
            await transport.send(turn_start("s", "t", "hi"))
            await transport.send(turn_complete("s", "t", "Done.", None, False))
            await transport.close()

        asyncio.run(run())

        self.assertFalse(transport.supports_streaming)
        self.assertEqual(["turn.start", "turn.complete"], [e.event for e in transport.events])
        self.assertEqual("turn.complete", transport.result().event)

    def test_result_is_none_before_terminal_event(self) -> None:
        self.assertIsNone(BlockingTransport().result())

    def test_all_flavours_satisfy_protocol(self) -> None:
        for transport in (PushChannelTransport(), SocketTransport(FakeSocket()), BlockingTransport()):
            self.assertIsInstance(transport, Transport)


if __name__ == "__main__":
    unittest.main()
