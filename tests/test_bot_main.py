import asyncio
import os
import signal
import unittest
from types import SimpleNamespace
from unittest import mock

import bot_main
from bot_main import UpdatePoller, _serve
from planbot.bot_prompts import PLAN_ACKNOWLEDGMENT
from planbot.engine import ConversationEngine
from planbot.plan_synthesizer import PlanSynthesizer
from planbot.telegram_transport import TelegramError
from planbot.transcript_writer import TranscriptWriter
from tests.fakes import FakeLlm, FakeTranscriptStore, FakeTransport


class FakeTelegram(FakeTransport):
    def __init__(self, batches):
        super().__init__()
        self.batches = list(batches)
        self.offsets = []

    def get_updates(self, offset=None, timeout=30):
        self.offsets.append(offset)
        return self.batches.pop(0) if self.batches else []


def text_update(update_id, user_id, text):
    return {"update_id": update_id, "message": {"from": {"id": user_id}, "text": text}}


class TestUpdatePoller(unittest.IsolatedAsyncioTestCase):
    def build(self, batches, store=None):
        self.telegram = FakeTelegram(batches)
        self.transcripts = store or FakeTranscriptStore()
        engine = ConversationEngine(
            transport=self.telegram,
            synthesizer=PlanSynthesizer(FakeLlm("PLAN")),
            writer=TranscriptWriter(self.transcripts),
            catalog=("Q1",),
        )
        return UpdatePoller(engine, self.telegram, poll_timeout=1)

    async def test_poll_dispatches_text_updates_and_advances_offset(self):
        poller = self.build([
            [text_update(10, 1, "hi"), text_update(11, 2, "hello"), {"update_id": 12, "message": {"from": {"id": 3}}}],
            [],
        ])

        self.assertEqual(await poller.poll_once(), 3)
        self.assertEqual(poller.offset, 13)
        await poller.shutdown()

        self.assertEqual(sorted(self.telegram.sent), [("1", "Q1"), ("2", "Q1")])
        await poller.poll_once()
        self.assertEqual(self.telegram.offsets, [None, 13])

    async def test_shutdown_drains_transcript_writes(self):
        poller = self.build([[text_update(1, 5, "hi")], [text_update(2, 5, "yes")]])
        await poller.poll_once()
        await poller.shutdown()
        await poller.poll_once()
        await poller.shutdown()

        self.assertEqual(poller.in_flight, 0)
        self.assertEqual(len(self.transcripts.records), 1)
        self.assertEqual(
            [m["content"] for m in self.transcripts.records[0]["messages"]],
            ["Q1", "yes", "PLAN"],
        )

    @unittest.skipUnless(os.name == "posix", "needs POSIX signals")
    async def test_sigterm_finishes_pending_transcript_writes(self):
        poller = self.build(
            [[text_update(1, 5, "hi")], [text_update(2, 5, "yes")]],
            store=FakeTranscriptStore(delay=0.3),
        )
        serving = asyncio.create_task(_serve(poller))

        for _ in range(500):
            if "PLAN" in self.telegram.texts_for("5"):
                break
            await asyncio.sleep(0.01)
        self.assertEqual(self.telegram.texts_for("5"), ["Q1", PLAN_ACKNOWLEDGMENT, "PLAN"])
        self.assertEqual(self.transcripts.records, [])

        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(serving, timeout=5)

        self.assertEqual(len(self.transcripts.records), 1)
        self.assertEqual(poller.engine.writer.in_flight, 0)


class TestMain(unittest.TestCase):
    def test_unreachable_telegram_at_startup_exits_with_status_1(self):
        settings = SimpleNamespace(log_level="INFO", telegram_bot_token="t", telegram_poll_timeout=1)
        transport = mock.Mock()
        transport.delete_webhook.side_effect = TelegramError("deleteWebhook: request failed")

        with mock.patch.object(bot_main.BotSettings, "from_env", return_value=settings), \
                mock.patch.object(bot_main, "configure_logging"), \
                mock.patch.object(bot_main, "connect_store"), \
                mock.patch.object(bot_main, "TelegramTransport", return_value=transport), \
                mock.patch.object(bot_main, "build_engine") as build_engine:
            with self.assertRaises(SystemExit) as ctx:
                bot_main.main()

        self.assertEqual(ctx.exception.code, 1)
        build_engine.assert_not_called()


if __name__ == "__main__":
    unittest.main()
