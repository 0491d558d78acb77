import unittest

from gamerlookup.resolver.errors import ResolutionFailure, error_kind_for_status, is_try_next
from gamerlookup.resolver.structures import ErrorKind, SourceKind


def attempt(source_kind: SourceKind, kind: ErrorKind) -> dict:
    return {"source_kind": source_kind, "started_at": "2024-05-01T00:00:00+00:00",
            "outcome": "failure", "error_kind": kind}


class TestErrors(unittest.TestCase):

    def test_status_mapping(self):
        self.assertIs(error_kind_for_status(401), ErrorKind.CREDENTIAL_INVALID)
        self.assertIs(error_kind_for_status(403), ErrorKind.CREDENTIAL_INVALID)
        self.assertIs(error_kind_for_status(404), ErrorKind.NOT_FOUND)
        self.assertIs(error_kind_for_status(429), ErrorKind.RATE_LIMITED)
        self.assertIs(error_kind_for_status(400), ErrorKind.MALFORMED_REQUEST)
        self.assertIs(error_kind_for_status(503), ErrorKind.UPSTREAM_UNAVAILABLE)

    def test_only_malformed_is_fatal(self):
        self.assertFalse(is_try_next(ErrorKind.MALFORMED_REQUEST))
        for kind in ErrorKind:
            if kind is not ErrorKind.MALFORMED_REQUEST:
                self.assertTrue(is_try_next(kind), kind)

    def test_http_status(self):
        cases = [
            ([attempt(SourceKind.STEAM_API, ErrorKind.NOT_FOUND)], 404),
            ([attempt(SourceKind.PSN_API, ErrorKind.CREDENTIAL_INVALID)], 401),
            ([attempt(SourceKind.PSN_API, ErrorKind.CREDENTIAL_INVALID),
              attempt(SourceKind.PSNPROFILES_SCRAPER, ErrorKind.NOT_FOUND)], 404),
            ([attempt(SourceKind.OPENXBL_API, ErrorKind.RATE_LIMITED)], 429),
            ([attempt(SourceKind.PSN_API, ErrorKind.CREDENTIAL_INVALID),
              attempt(SourceKind.PSNPROFILES_SCRAPER, ErrorKind.SCRAPE_BLOCKED)], 502),
            ([attempt(SourceKind.STEAM_API, ErrorKind.UPSTREAM_UNAVAILABLE)], 502),
        ]
        for attempts, status in cases:
            self.assertEqual(ResolutionFailure("failed", attempts).http_status, status, attempts)

        self.assertEqual(ResolutionFailure("bad", [], fatal_kind=ErrorKind.MALFORMED_REQUEST).http_status, 400)
        self.assertEqual(ResolutionFailure("late", [], deadline_exceeded=True).http_status, 504)

    def test_response_lists_sources_in_order(self):
        failure = ResolutionFailure("failed", [
            attempt(SourceKind.PSN_API, ErrorKind.CREDENTIAL_INVALID),
            attempt(SourceKind.PSNPROFILES_SCRAPER, ErrorKind.SCRAPE_BLOCKED),
        ])

        self.assertEqual(failure.to_response(), {
            "error": "failed",
            "sources_attempted": ["psn_api", "psnprofiles_scraper"],
            "error_kinds": ["credential_invalid", "scrape_blocked"],
        })


if __name__ == "__main__":
    unittest.main()
