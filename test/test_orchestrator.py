import asyncio
import time
import unittest

from fakes import FakeAdapter, psn_payload, steam_payload, xbox_payload
from gamerlookup.lib.db.schemes import PlatformEnum, QualificationStatusEnum
from gamerlookup.resolver.cache import ResultCache
from gamerlookup.resolver.errors import ResolutionFailure, SourceError
from gamerlookup.resolver.events import RecordingEventSink
from gamerlookup.resolver.orchestrator import FallbackOrchestrator
from gamerlookup.resolver.structures import ErrorKind, SourceKind
from gamerlookup.resolver.tokens import TokenLifecycleManager


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestFallbackOrchestrator(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clock = FakeClock()
        self.cache = ResultCache(default_ttl=1800, clock=self.clock)
        self.events = RecordingEventSink()

    def _orchestrator(self, chains, **kwargs) -> FallbackOrchestrator:
        kwargs.setdefault("attempt_timeout", 1.0)
        kwargs.setdefault("deadline", 5.0)
        return FallbackOrchestrator(chains, self.cache, events=self.events, **kwargs)

    def _attempts(self) -> list[dict]:
        return [fields for name, fields in self.events.events if name == "attempt"]

    async def test_cache_hit_skips_adapters(self):
        steam = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM, [steam_payload()])
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [steam]})

        first = await orchestrator.resolve({"platform": PlatformEnum.STEAM, "identifier": "Gabe"})
        second = await orchestrator.resolve({"platform": "steam", "identifier": " gabe "})

        self.assertEqual(first, second)
        self.assertEqual(len(steam.calls), 1)
        self.assertEqual(self.events.names().count("cache_hit"), 1)
        self.assertEqual(self.cache.stats(), {"hits": 1, "misses": 1, "size": 1})

    async def test_returned_profile_is_a_copy(self):
        steam = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM, [steam_payload()])
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [steam]})

        first = await orchestrator.resolve({"platform": "steam", "identifier": "gabe"})
        first["games"].clear()
        second = await orchestrator.resolve({"platform": "steam", "identifier": "gabe"})

        self.assertEqual(len(second["games"]), 1)

    async def test_concurrent_requests_share_one_resolution(self):
        steam = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM, [steam_payload()], delay=0.05)
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [steam]})

        results = await asyncio.gather(*(
            orchestrator.resolve({"platform": "steam", "identifier": "gabe"}) for _ in range(10)
        ))

        self.assertEqual(len(steam.calls), 1)
        self.assertTrue(all(result == results[0] for result in results))

    async def test_concurrent_failures_are_shared(self):
        steam = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM,
                            [SourceError(ErrorKind.NOT_FOUND)], delay=0.05)
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [steam]})

        results = await asyncio.gather(*(
            orchestrator.resolve({"platform": "steam", "identifier": "ghost"}) for _ in range(4)
        ), return_exceptions=True)

        self.assertEqual(len(steam.calls), 1)
        self.assertTrue(all(isinstance(result, ResolutionFailure) for result in results))

    async def test_ttl_expiry_resolves_again(self):
        steam = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM, [steam_payload()])
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [steam]}, ttl_for=lambda platform: 60)

        await orchestrator.resolve({"platform": "steam", "identifier": "gabe"})
        self.clock.now += 61
        await orchestrator.resolve({"platform": "steam", "identifier": "gabe"})

        self.assertEqual(len(steam.calls), 2)

    async def test_steam_hours_and_quality(self):
        steam = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM, [steam_payload()])
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [steam]})

        profile = await orchestrator.resolve({"platform": "steam", "identifier": "gabe"})

        self.assertEqual(profile["games"][0]["hours_played"], 45)
        self.assertEqual(profile["total_hours"], 45)
        self.assertIs(profile["qualification_status"], QualificationStatusEnum.AUTHENTIC)
        self.assertIsNotNone(profile["resolved_at"])

    async def test_psn_credential_invalid_falls_back_to_scraper(self):
        token = TokenLifecycleManager("PSN_NPSSO_TOKEN")
        token.supply("expired-npsso")
        psn_api = FakeAdapter(SourceKind.PSN_API, PlatformEnum.PSN,
                              [SourceError(ErrorKind.CREDENTIAL_INVALID, "HTTP 401")],
                              requires_credential=True, token_manager=token)
        scraper = FakeAdapter(SourceKind.PSNPROFILES_SCRAPER, PlatformEnum.PSN,
                              [psn_payload(SourceKind.PSNPROFILES_SCRAPER)])
        orchestrator = self._orchestrator({PlatformEnum.PSN: [psn_api, scraper]})

        profile = await orchestrator.resolve({"platform": "playstation", "identifier": "Tvrsier"})

        self.assertIs(profile["qualification_status"], QualificationStatusEnum.AUTHENTIC_SCRAPED)
        self.assertEqual(profile["data_source"], "psnprofiles_scraper")
        attempts = self._attempts()
        self.assertEqual([a["source_kind"] for a in attempts], ["psn_api", "psnprofiles_scraper"])
        self.assertEqual([a["outcome"] for a in attempts], ["failure", "success"])
        self.assertEqual(attempts[0]["error_kind"], "credential_invalid")
        self.assertTrue(token.status()["is_expired"])

    async def test_unusable_token_skips_adapter(self):
        token = TokenLifecycleManager("PSN_NPSSO_TOKEN")
        psn_api = FakeAdapter(SourceKind.PSN_API, PlatformEnum.PSN, [psn_payload()],
                              requires_credential=True, token_manager=token)
        scraper = FakeAdapter(SourceKind.PSNPROFILES_SCRAPER, PlatformEnum.PSN,
                              [psn_payload(SourceKind.PSNPROFILES_SCRAPER)])
        orchestrator = self._orchestrator({PlatformEnum.PSN: [psn_api, scraper]})

        await orchestrator.resolve({"platform": "playstation", "identifier": "Tvrsier"})

        self.assertEqual(psn_api.calls, [])
        self.assertEqual(len(scraper.calls), 1)
        self.assertEqual(self._attempts()[0]["error_kind"], "credential_invalid")

    async def test_rate_limited_token_source_keeps_token(self):
        token = TokenLifecycleManager("PSN_NPSSO_TOKEN")
        token.supply("npsso")
        psn_api = FakeAdapter(SourceKind.PSN_API, PlatformEnum.PSN,
                              [SourceError(ErrorKind.RATE_LIMITED, "HTTP 429")],
                              requires_credential=True, token_manager=token)
        scraper = FakeAdapter(SourceKind.PSNPROFILES_SCRAPER, PlatformEnum.PSN,
                              [psn_payload(SourceKind.PSNPROFILES_SCRAPER)])
        orchestrator = self._orchestrator({PlatformEnum.PSN: [psn_api, scraper]})

        profile = await orchestrator.resolve({"platform": "playstation", "identifier": "Tvrsier"})

        self.assertEqual(profile["data_source"], "psnprofiles_scraper")
        self.assertEqual(self._attempts()[0]["error_kind"], "rate_limited")
        self.assertFalse(token.status()["is_expired"])
        self.assertTrue(token.is_usable())

    async def test_slow_credential_check_times_out_and_falls_back(self):
        async def slow_validator(value: str) -> bool:
            await asyncio.sleep(1.0)
            return True

        token = TokenLifecycleManager("PSN_NPSSO_TOKEN", validator=slow_validator)
        token.supply("npsso")
        psn_api = FakeAdapter(SourceKind.PSN_API, PlatformEnum.PSN, [psn_payload()],
                              requires_credential=True, token_manager=token)
        scraper = FakeAdapter(SourceKind.PSNPROFILES_SCRAPER, PlatformEnum.PSN,
                              [psn_payload(SourceKind.PSNPROFILES_SCRAPER)])
        orchestrator = FallbackOrchestrator({PlatformEnum.PSN: [psn_api, scraper]}, self.cache,
                                            attempt_timeout=0.05, deadline=5.0, events=self.events)

        started = time.monotonic()
        profile = await orchestrator.resolve({"platform": "playstation", "identifier": "Tvrsier"})

        self.assertLess(time.monotonic() - started, 0.5)
        self.assertEqual(profile["data_source"], "psnprofiles_scraper")
        self.assertEqual(psn_api.calls, [])
        self.assertEqual(self._attempts()[0]["error_kind"], "timeout")

    async def test_slow_credential_check_respects_deadline(self):
        async def slow_validator(value: str) -> bool:
            await asyncio.sleep(1.0)
            return True

        token = TokenLifecycleManager("PSN_NPSSO_TOKEN", validator=slow_validator)
        token.supply("npsso")
        psn_api = FakeAdapter(SourceKind.PSN_API, PlatformEnum.PSN, [psn_payload()],
                              requires_credential=True, token_manager=token)
        scraper = FakeAdapter(SourceKind.PSNPROFILES_SCRAPER, PlatformEnum.PSN,
                              [psn_payload(SourceKind.PSNPROFILES_SCRAPER)])
        orchestrator = FallbackOrchestrator({PlatformEnum.PSN: [psn_api, scraper]}, ResultCache(),
                                            attempt_timeout=1.0, deadline=0.05, events=self.events)

        started = time.monotonic()
        with self.assertRaises(ResolutionFailure) as raised:
            await orchestrator.resolve({"platform": "playstation", "identifier": "Tvrsier"})

        self.assertLess(time.monotonic() - started, 0.5)
        self.assertEqual(raised.exception.http_status, 504)
        self.assertEqual(scraper.calls, [])

    async def test_xbox_is_partial(self):
        xbox = FakeAdapter(SourceKind.OPENXBL_API, PlatformEnum.XBOX, [xbox_payload()])
        orchestrator = self._orchestrator({PlatformEnum.XBOX: [xbox]})

        profile = await orchestrator.resolve({"platform": "xbox", "identifier": "MajorNelson"})

        self.assertIs(profile["qualification_status"], QualificationStatusEnum.PARTIAL)
        self.assertIn("hours_played", profile["qualification_reason"])
        self.assertTrue(all(game["hours_played"] is None for game in profile["games"]))
        self.assertEqual(profile["total_hours"], 0)

    async def test_all_sources_fail(self):
        token = TokenLifecycleManager("PSN_NPSSO_TOKEN")
        token.supply("npsso")
        psn_api = FakeAdapter(SourceKind.PSN_API, PlatformEnum.PSN,
                              [SourceError(ErrorKind.CREDENTIAL_INVALID)],
                              requires_credential=True, token_manager=token)
        scraper = FakeAdapter(SourceKind.PSNPROFILES_SCRAPER, PlatformEnum.PSN,
                              [SourceError(ErrorKind.SCRAPE_BLOCKED)])
        orchestrator = self._orchestrator({PlatformEnum.PSN: [psn_api, scraper]})

        with self.assertRaises(ResolutionFailure) as raised:
            await orchestrator.resolve({"platform": "playstation", "identifier": "Tvrsier"})

        failure = raised.exception
        self.assertEqual(failure.sources_attempted, ["psn_api", "psnprofiles_scraper"])
        self.assertEqual(failure.error_kinds, [ErrorKind.CREDENTIAL_INVALID, ErrorKind.SCRAPE_BLOCKED])
        self.assertEqual(failure.http_status, 502)
        self.assertEqual(self.cache.stats()["size"], 0)

    async def test_fatal_kind_halts_chain(self):
        first = FakeAdapter(SourceKind.PSN_API, PlatformEnum.PSN, [SourceError(ErrorKind.MALFORMED_REQUEST)])
        second = FakeAdapter(SourceKind.PSNPROFILES_SCRAPER, PlatformEnum.PSN,
                             [psn_payload(SourceKind.PSNPROFILES_SCRAPER)])
        orchestrator = self._orchestrator({PlatformEnum.PSN: [first, second]})

        with self.assertRaises(ResolutionFailure) as raised:
            await orchestrator.resolve({"platform": "playstation", "identifier": "Tvrsier"})

        self.assertEqual(second.calls, [])
        self.assertEqual(raised.exception.http_status, 400)
        self.assertEqual(raised.exception.sources_attempted, ["psn_api"])

    async def test_malformed_request_invokes_nothing(self):
        steam = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM, [steam_payload()])
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [steam]})

        for request in ({"platform": "steam", "identifier": "   "}, {"platform": "gamecube", "identifier": "x"}):
            with self.assertRaises(ResolutionFailure) as raised:
                await orchestrator.resolve(request)
            self.assertEqual(raised.exception.http_status, 400)
            self.assertEqual(raised.exception.sources_attempted, [])
        self.assertEqual(steam.calls, [])

    async def test_transient_failure_retried_as_separate_attempt(self):
        steam = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM,
                            [SourceError(ErrorKind.UPSTREAM_UNAVAILABLE), steam_payload()])
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [steam]}, transient_retries=1)

        await orchestrator.resolve({"platform": "steam", "identifier": "gabe"})

        self.assertEqual(len(steam.calls), 2)
        self.assertEqual([a["outcome"] for a in self._attempts()], ["failure", "success"])

    async def test_non_transient_failure_not_retried(self):
        steam = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM, [SourceError(ErrorKind.NOT_FOUND)])
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [steam]}, transient_retries=3)

        with self.assertRaises(ResolutionFailure) as raised:
            await orchestrator.resolve({"platform": "steam", "identifier": "ghost"})

        self.assertEqual(len(steam.calls), 1)
        self.assertEqual(raised.exception.http_status, 404)

    async def test_slow_adapter_times_out_and_falls_back(self):
        slow = FakeAdapter(SourceKind.PSN_API, PlatformEnum.PSN, [psn_payload()], delay=1.0)
        scraper = FakeAdapter(SourceKind.PSNPROFILES_SCRAPER, PlatformEnum.PSN,
                              [psn_payload(SourceKind.PSNPROFILES_SCRAPER)])
        orchestrator = FallbackOrchestrator({PlatformEnum.PSN: [slow, scraper]}, self.cache,
                                            attempt_timeout=0.05, deadline=5.0, events=self.events)

        profile = await orchestrator.resolve({"platform": "playstation", "identifier": "Tvrsier"})

        self.assertEqual(profile["data_source"], "psnprofiles_scraper")
        self.assertEqual(self._attempts()[0]["error_kind"], "timeout")

    async def test_deadline_exceeded(self):
        slow = FakeAdapter(SourceKind.PSN_API, PlatformEnum.PSN, [psn_payload()], delay=1.0)
        scraper = FakeAdapter(SourceKind.PSNPROFILES_SCRAPER, PlatformEnum.PSN,
                              [psn_payload(SourceKind.PSNPROFILES_SCRAPER)])
        orchestrator = FallbackOrchestrator({PlatformEnum.PSN: [slow, scraper]}, ResultCache(),
                                            attempt_timeout=1.0, deadline=0.05, events=self.events)

        with self.assertRaises(ResolutionFailure) as raised:
            await orchestrator.resolve({"platform": "playstation", "identifier": "Tvrsier"})

        self.assertTrue(raised.exception.deadline_exceeded)
        self.assertEqual(raised.exception.http_status, 504)
        self.assertEqual(scraper.calls, [])

    async def test_unexpected_adapter_error_is_upstream_unavailable(self):
        broken = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM, [RuntimeError("bug")])
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [broken]})

        with self.assertRaises(ResolutionFailure) as raised:
            await orchestrator.resolve({"platform": "steam", "identifier": "gabe"})

        self.assertEqual(raised.exception.error_kinds, [ErrorKind.UPSTREAM_UNAVAILABLE])

    async def test_history_failure_does_not_fail_lookup(self):
        recorded = []

        async def broken_history(profile, lookup_key):
            recorded.append(lookup_key)
            raise RuntimeError("database is locked")

        steam = FakeAdapter(SourceKind.STEAM_API, PlatformEnum.STEAM, [steam_payload()])
        orchestrator = self._orchestrator({PlatformEnum.STEAM: [steam]}, history=broken_history)

        profile = await orchestrator.resolve({"platform": "steam", "identifier": "Gabe"})

        self.assertEqual(profile["total_hours"], 45)
        self.assertEqual(recorded, ["gabe"])


if __name__ == "__main__":
    unittest.main()
