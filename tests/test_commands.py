import unittest
from unittest import mock

from pickem.commands import (
    ERROR_TEXT,
    HELP_TEXT,
    NO_CANDIDATES_TEXT,
    CommandRequest,
    PickemCommands,
    parse_command,
)
from pickem.connectors import NotReadable, StateStore
from pickem.repository import InvalidSampleSize, PickemRepository, PickOutcome


class ParseCommandTests(unittest.TestCase):
    def test_collapses_whitespace_and_keeps_one_argument(self) -> None:
        self.assertEqual(parse_command("  exclude   <@1>  <@2> "), ("exclude", ["<@1>"]))
        self.assertEqual(parse_command("PICK"), ("pick", []))
        self.assertEqual(parse_command(""), ("", []))


class PickemCommandsTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.repository = mock.create_autospec(PickemRepository, instance=True)
        self.store = mock.create_autospec(StateStore, instance=True)
        self.announce = mock.AsyncMock()
        self.list_members = mock.AsyncMock(return_value=["1", "2"])
        self.commands = PickemCommands(self.repository)

    def _request(self, text: str) -> CommandRequest:
        return CommandRequest(
            user_name="alice",
            channel_id="c0",
            text=text,
            store=self.store,
            list_members=self.list_members,
            announce=self.announce,
        )

    async def test_pick_announces_the_winner(self) -> None:
        self.repository.pick.return_value = PickOutcome(user_id="2", cohort=("2",))
        reply = await self.commands.handle(self._request("pick"))
        self.assertIsNone(reply)
        self.repository.pick.assert_awaited_once_with(self.store, "c0", ["1", "2"])
        self.announce.assert_awaited_once_with("alice picked <@2>")

    async def test_pick_with_nobody_available(self) -> None:
        self.repository.pick.return_value = PickOutcome(user_id=None)
        reply = await self.commands.handle(self._request("pick"))
        self.assertEqual(reply, NO_CANDIDATES_TEXT)
        self.announce.assert_not_awaited()

    async def test_exclude_without_argument_lists_users(self) -> None:
        self.repository.excluded.return_value = ["1", "3"]
        reply = await self.commands.handle(self._request("exclude"))
        self.assertEqual(reply, "Excluded users: <@1>, <@3>")

        self.repository.excluded.return_value = []
        reply = await self.commands.handle(self._request("exclude"))
        self.assertEqual(reply, "No excluded users")

    async def test_exclude_a_mentioned_user(self) -> None:
        reply = await self.commands.handle(self._request("exclude <@!42>"))
        self.assertIsNone(reply)
        self.repository.exclude.assert_awaited_once_with(self.store, "c0", "42")
        self.announce.assert_awaited_once_with("alice excluded <@42>")

    async def test_exclude_rejects_plain_names(self) -> None:
        reply = await self.commands.handle(self._request("exclude bob"))
        self.assertEqual(reply, "Unknown user: bob")
        self.repository.exclude.assert_not_awaited()

    async def test_include(self) -> None:
        reply = await self.commands.handle(self._request("include <@U123|bob>"))
        self.assertIsNone(reply)
        self.repository.include.assert_awaited_once_with(self.store, "c0", "U123")
        self.announce.assert_awaited_once_with("alice included <@U123>")

    async def test_include_requires_a_user(self) -> None:
        self.assertEqual(await self.commands.handle(self._request("include")), "Try include @username")
        self.assertEqual(await self.commands.handle(self._request("include bob")), "Unknown user: bob")
        self.repository.include.assert_not_awaited()

    async def test_sample_size_read_and_write(self) -> None:
        self.repository.sample_size.return_value = 2
        self.assertEqual(await self.commands.handle(self._request("sample_size")), "sample_size is: 2")

        reply = await self.commands.handle(self._request("sample_size 3"))
        self.assertIsNone(reply)
        self.repository.set_sample_size.assert_awaited_once_with(self.store, "c0", 3)
        self.announce.assert_awaited_once_with("alice set sample_size to 3")

    async def test_sample_size_rejects_bad_values(self) -> None:
        reply = await self.commands.handle(self._request("sample_size lots"))
        self.assertEqual(reply, "sample_size must be a whole number of at least 1")
        self.repository.set_sample_size.assert_not_awaited()

        self.repository.set_sample_size.side_effect = InvalidSampleSize("too small")
        reply = await self.commands.handle(self._request("sample_size 0"))
        self.assertEqual(reply, "sample_size must be a whole number of at least 1")
        self.announce.assert_not_awaited()

    async def test_unknown_commands_show_help(self) -> None:
        for text in ("", "help", "dance"):
            with self.subTest(text=text):
                self.assertEqual(await self.commands.handle(self._request(text)), HELP_TEXT)

    async def test_store_errors_become_an_error_reply(self) -> None:
        self.repository.pick.side_effect = NotReadable("denied")
        with self.assertLogs("pickem.commands", level="ERROR"):
            reply = await self.commands.handle(self._request("pick"))
        self.assertEqual(reply, ERROR_TEXT)
        self.announce.assert_not_awaited()


if __name__ == "__main__":
    unittest.main()
