from __future__ import annotations

import unittest
from unittest.mock import patch

import config
from utils.http_client import ResilientHttpClient, RetryPolicy


class ConfigPatchMixin:
    def setUp(self) -> None:
        super().setUp()
        self._cfg_old: dict[str, object] = {}

    def patch_cfg(self, **kwargs: object) -> None:
        for key, value in kwargs.items():
            if key not in self._cfg_old:
                self._cfg_old[key] = getattr(config, key, None)
            setattr(config, key, value)

    def tearDown(self) -> None:
        for key, value in self._cfg_old.items():
            setattr(config, key, value)
        super().tearDown()


class _Response:
    def __init__(self, status: int, payload: object = None, headers: dict[str, str] | None = None) -> None:
        self.status = status
        self.payload = payload
        self.headers = headers or {}

    async def __aenter__(self) -> "_Response":
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    async def json(self, content_type: str | None = None) -> object:
        return self.payload

    async def text(self) -> str:
        return "error body"


class _Session:
    def __init__(self, responses: list[_Response]) -> None:
        self.responses = responses
        self.calls: list[dict] = []
        self.closed = False

    def get(self, url: str, params=None, headers=None) -> _Response:
        self.calls.append({"url": url, "params": params, "headers": headers})
        return self.responses.pop(0)

    async def close(self) -> None:
        self.closed = True


class RetryPolicyTests(ConfigPatchMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.patch_cfg(
            HTTP_RETRY_ATTEMPTS=3,
            HTTP_BACKOFF_BASE_SECONDS=0.5,
            HTTP_BACKOFF_MAX_SECONDS=4.0,
            HTTP_JITTER_SECONDS=0.0,
            HTTP_RATE_LIMIT_DELAY_SECONDS=2.0,
        )

    def test_exponential_backoff_is_capped(self) -> None:
        policy = RetryPolicy.from_config()
        self.assertEqual([policy.delay(n, 503) for n in (1, 2, 3, 4, 5)], [0.5, 1.0, 2.0, 4.0, 4.0])

    def test_rate_limit_adds_penalty_and_honors_retry_after(self) -> None:
        policy = RetryPolicy.from_config()
        self.assertEqual(policy.delay(1, 429), 2.5)
        self.assertEqual(policy.delay(1, 429, retry_after=1.5), 1.5)
        self.assertEqual(policy.delay(1, 429, retry_after=60), 4.0)

    def test_attempts_override(self) -> None:
        self.assertEqual(RetryPolicy.from_config(7).attempts, 7)
        self.assertEqual(RetryPolicy.from_config().attempts, 3)


class ResilientHttpClientTests(ConfigPatchMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.patch_cfg(HTTP_RETRY_ATTEMPTS=3, HTTP_JITTER_SECONDS=0.0)

    async def _run(self, responses: list[_Response], **kwargs):
        client = ResilientHttpClient(timeout_seconds=5)
        session = _Session(responses)
        with patch.object(client, "_session_or_new", return_value=session), patch(
            "utils.http_client.asyncio.sleep"
        ) as sleep:
            result = await client.get_json("https://example.test/x", source="Feed", **kwargs)
        return client, session, sleep, result

    async def test_retries_server_errors_then_succeeds(self) -> None:
        client, session, sleep, result = await self._run([_Response(503), _Response(200, {"ok": 1})])
        self.assertTrue(result.ok)
        self.assertEqual(result.data, {"ok": 1})
        self.assertEqual(len(session.calls), 2)
        self.assertEqual(sleep.await_count, 1)
        stats = client.snapshot_stats()["feed"]
        self.assertEqual((stats["ok"], stats["retries"], stats["fail"]), (1, 1, 0))

    async def test_client_error_is_not_retried(self) -> None:
        client, session, sleep, result = await self._run([_Response(404)])
        self.assertFalse(result.ok)
        self.assertEqual(result.status, 404)
        self.assertIn("error body", result.error)
        self.assertEqual(len(session.calls), 1)
        sleep.assert_not_awaited()

    async def test_gives_up_after_max_attempts(self) -> None:
        responses = [_Response(429, headers={"Retry-After": "1"}) for _ in range(2)]
        client, session, sleep, result = await self._run(responses, max_attempts=2)
        self.assertEqual(result.status, 429)
        self.assertEqual(len(session.calls), 2)
        sleep.assert_awaited_once_with(1.0)
        self.assertEqual(client.snapshot_stats(reset=True)["feed"]["rate_limited"], 2)
        self.assertEqual(client.snapshot_stats(), {})


if __name__ == "__main__":
    unittest.main()
