import asyncio
import unittest

from aiohttp import web
from aiohttp.test_utils import TestServer

from dm_client.api_client import (
    CsrfTokenCache,
    MessagingApi,
    NotAuthorizedError,
    NotFoundError,
    TransientNetworkError,
    ValidationError,
)
from dm_client.config import ClientConfig

from tests.fake_backend import FakeBackend, message_json


class MessagingApiTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.backend = FakeBackend()
        self.backend.add_conversation("c1", "alice", 10)
        self.backend.add_conversation("c2", "bob", 20, unread=2)
        self.backend.add_message("c1", "m1", "alice", 5, "hello")
        self.backend.add_message("c1", "m2", "me", 6, "hi alice")
        self.server = TestServer(self.backend.app())
        await self.server.start_server()
        self.config = ClientConfig(
            base_url=str(self.server.make_url("")),
            user_id="me",
            session_cookie="sess-1",
        )
        self.api = MessagingApi(self.config)

    async def asyncTearDown(self):
        if hasattr(self, "api") and self.api:
            await self.api.close()
        if hasattr(self, "server") and self.server:
            await self.server.close()

    async def test_list_conversations(self):
        conversations = await self.api.list_conversations()

        self.assertEqual([item.id for item in conversations], ["c2", "c1"])
        self.assertEqual(conversations[0].unread_count, 2)
        self.assertEqual(conversations[1].last_message.id, "m2")
        self.assertEqual(conversations[1].peer.label, "Alice")

    async def test_fetch_messages_paginates(self):
        page = await self.api.fetch_messages("c1", page=1, limit=1)

        self.assertEqual([item.id for item in page.messages], ["m2"])
        self.assertTrue(page.pagination.has_next_page)
        self.assertEqual(page.pagination.total, 2)

    async def test_send_fetches_csrf_token_once(self):
        first = await self.api.send_message("c1", "one")
        second = await self.api.send_message("c1", "two")

        self.assertEqual(first.content, "one")
        self.assertEqual(second.sender.id, "me")
        self.assertEqual(self.backend.csrf_fetches, 1)
        self.assertEqual(self.api.csrf.token, "csrf-1")

    async def test_concurrent_unsafe_requests_share_one_token_fetch(self):
        await asyncio.gather(
            self.api.send_message("c1", "one"),
            self.api.send_typing("c1", True),
            self.api.mark_read("c2"),
        )

        self.assertEqual(self.backend.csrf_fetches, 1)
        self.assertEqual(self.backend.typing, [("c1", True)])
        self.assertEqual(self.backend.conversations["c2"]["unreadCount"], 0)

    async def test_forbidden_response_invalidates_token(self):
        await self.api.send_message("c1", "one")
        self.backend.rotate_csrf()

        with self.assertRaises(NotAuthorizedError) as caught:
            await self.api.send_message("c1", "two")

        self.assertEqual(caught.exception.status, 403)
        self.assertIsNone(self.api.csrf.token)
        await self.api.send_message("c1", "three")
        self.assertEqual(self.backend.csrf_fetches, 2)

    async def test_focus_invalidates_token(self):
        await self.api.send_typing("c1", True)

        self.api.on_focus()
        await self.api.send_typing("c1", False)

        self.assertEqual(self.backend.csrf_fetches, 2)

    async def test_server_validation_error(self):
        with self.assertRaises(ValidationError) as caught:
            await self.api.send_message("c1", "   ")

        self.assertEqual(str(caught.exception), "Invalid message content")

    async def test_delete_returns_replacement_last_message(self):
        result = await self.api.delete_message("c1", "m2")

        self.assertEqual(result.last_message.id, "m1")

    async def test_delete_missing_message_is_not_found(self):
        with self.assertRaises(NotFoundError):
            await self.api.delete_message("c1", "missing")

    async def test_delete_someone_elses_message_is_forbidden(self):
        with self.assertRaises(NotAuthorizedError):
            await self.api.delete_message("c1", "m1")

    async def test_create_conversation_returns_existing_peer(self):
        created = await self.api.create_conversation("alice")
        fresh = await self.api.create_conversation("dave")

        self.assertEqual(created.id, "c1")
        self.assertEqual(fresh.peer.id, "dave")

    async def test_missing_session_cookie_is_not_authorized(self):
        anonymous = MessagingApi(ClientConfig(base_url=self.config.base_url))
        try:
            with self.assertRaises(NotAuthorizedError) as caught:
                await anonymous.list_conversations()
        finally:
            await anonymous.close()

        self.assertEqual(caught.exception.status, 401)

    async def test_unreachable_server_is_transient(self):
        await self.server.close()

        with self.assertLogs("dm_client.api_client", level="WARNING"):
            with self.assertRaises(TransientNetworkError):
                await self.api.list_conversations()


class MalformedPayloadTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        async def conversations(request):
            return web.json_response([{"id": "c1"}])

        async def messages(request):
            return web.json_response(
                {
                    "messages": [{**message_json("m1", "c1", "alice", 1, "hi"), "createdAt": 1e300}],
                    "pagination": {"page": 1, "limit": 50, "total": 1, "hasNextPage": False},
                }
            )

        app = web.Application()
        app.router.add_get("/api/conversations", conversations)
        app.router.add_get("/api/conversations/{cid}/messages", messages)
        self.server = TestServer(app)
        await self.server.start_server()
        self.api = MessagingApi(
            ClientConfig(base_url=str(self.server.make_url("")), user_id="me", session_cookie="sess-1")
        )

    async def asyncTearDown(self):
        await self.api.close()
        await self.server.close()

    async def test_conversation_without_timestamp_is_transient(self):
        with self.assertRaises(TransientNetworkError) as caught:
            await self.api.list_conversations()

        self.assertIn("malformed conversation", str(caught.exception))

    async def test_out_of_range_message_timestamp_is_transient(self):
        with self.assertRaises(TransientNetworkError) as caught:
            await self.api.fetch_messages("c1")

        self.assertIn("malformed message page", str(caught.exception))

class CsrfTokenCacheTests(unittest.IsolatedAsyncioTestCase):
    async def test_failed_fetch_is_retried_on_next_call(self):
        cache = CsrfTokenCache()
        attempts = []

        async def fetch():
            attempts.append(1)
            if len(attempts) == 1:
                raise TransientNetworkError("offline")
            return "tok"

        with self.assertRaises(TransientNetworkError):
            await cache.get(fetch)

        self.assertEqual(await cache.get(fetch), "tok")
        self.assertEqual(len(attempts), 2)

    async def test_reset_abandons_pending_fetch(self):
        cache = CsrfTokenCache()
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return "late"

        waiter = asyncio.create_task(cache.get(slow))
        await asyncio.sleep(0)
        cache.reset()

        with self.assertRaises(asyncio.CancelledError):
            await waiter
        self.assertIsNone(cache.token)


if __name__ == "__main__":
    unittest.main()
