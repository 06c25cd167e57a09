import unittest

from planbot.transcript_writer import TranscriptWriter
from tests.fakes import FakeTranscriptStore


ANSWERS = {
    "bot_step_0": "Q1",
    "user_step_1": "A1",
    "bot_step_2": "Q2",
    "user_step_3": "A2",
}


class TestBuildMessages(unittest.TestCase):
    def test_roles_follow_labels_and_plan_is_last(self):
        messages = TranscriptWriter(FakeTranscriptStore()).build_messages(ANSWERS, "PLAN")
        self.assertEqual(
            messages,
            [
                {"role": "bot", "content": "Q1"},
                {"role": "user", "content": "A1"},
                {"role": "bot", "content": "Q2"},
                {"role": "user", "content": "A2"},
                {"role": "bot", "content": "PLAN"},
            ],
        )

    def test_empty_plan_is_not_appended(self):
        writer = TranscriptWriter(FakeTranscriptStore())
        self.assertEqual(len(writer.build_messages(ANSWERS, None)), 4)
        self.assertEqual(len(writer.build_messages(ANSWERS, "")), 4)

    def test_roles_are_only_bot_or_user(self):
        answers = {"bot_step_0": "Q", "user_step_1": "x", "something_else": "y"}
        roles = {m["role"] for m in TranscriptWriter(FakeTranscriptStore()).build_messages(answers, "P")}
        self.assertLessEqual(roles, {"bot", "user"})


class TestWrite(unittest.TestCase):
    def test_hands_one_record_to_the_store(self):
        store = FakeTranscriptStore()
        self.assertTrue(TranscriptWriter(store).write(42, ANSWERS, "PLAN"))

        self.assertEqual(len(store.records), 1)
        self.assertEqual(store.records[0]["user_id"], "42")
        self.assertEqual(store.records[0]["messages"][-1], {"role": "bot", "content": "PLAN"})

    def test_store_failure_is_logged_not_raised(self):
        writer = TranscriptWriter(FakeTranscriptStore(error=RuntimeError("db down")))
        with self.assertLogs("planbot", level="ERROR") as logs:
            self.assertFalse(writer.write("u", ANSWERS, "PLAN"))
        self.assertIn("Error saving conversation for user u", logs.output[0])


class TestSubmit(unittest.IsolatedAsyncioTestCase):
    async def test_submit_runs_in_background_and_drains(self):
        store = FakeTranscriptStore()
        writer = TranscriptWriter(store)
        answers = dict(ANSWERS)

        task = writer.submit("u", answers, "PLAN")
        answers.clear()
        await writer.drain()

        self.assertTrue(task.done())
        self.assertTrue(task.result())
        self.assertEqual(writer.in_flight, 0)
        self.assertEqual(len(store.records[0]["messages"]), 5)

    async def test_submit_failure_resolves_to_false(self):
        writer = TranscriptWriter(FakeTranscriptStore(error=RuntimeError("db down")))
        task = writer.submit("u", ANSWERS, "PLAN")
        await writer.drain()
        self.assertFalse(task.result())


if __name__ == "__main__":
    unittest.main()
