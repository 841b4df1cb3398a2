import random
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from simworker.config import TransportConfig
from simworker.errors import TransportExhaustedError
from simworker.models import EndpointPool, RequestSpec
from simworker.transport import RequestDispatcher, build_session

from support import FakeClock, FakeSession, make_config, recording_logger


def make_dispatcher(session: FakeSession, clock: FakeClock, seed: int = 0, development: bool = True):
    logger, handler = recording_logger("test_simworker.transport")
    dispatcher = RequestDispatcher(
        session,
        TransportConfig(development=development),
        timeout_seconds=5,
        logger=logger,
        rng=random.Random(seed),
        sleep=clock.sleep,
        clock=clock,
    )
    return dispatcher, handler


class DispatcherTest(unittest.TestCase):
    def test_fails_over_to_reachable_endpoint_for_any_order(self) -> None:
        pool = EndpointPool("experiment_managers", ("down:1", "up:2", "down:3"))
        for seed in range(10):
            session = FakeSession()
            session.down = {"down:1", "down:3"}
            session.route("GET", "http://up:2/experiments/1/next_simulation", b'{"status":"ok"}')
            dispatcher, _ = make_dispatcher(session, FakeClock(), seed=seed)

            body = dispatcher.dispatch(RequestSpec("GET", "experiments/1/next_simulation"), pool)

            self.assertEqual(body, b'{"status":"ok"}')
            self.assertEqual(session.calls[-1].url, "http://up:2/experiments/1/next_simulation")

    def test_http_error_status_is_returned_without_failover(self) -> None:
        session = FakeSession()
        session.route("GET", "http://a:1/x", b"internal error", status_code=500)
        session.route("GET", "http://b:1/x", b"fine")
        dispatcher, _ = make_dispatcher(session, FakeClock())

        body = dispatcher.dispatch(RequestSpec("GET", "x"), EndpointPool("coordinators", ("a:1", "b:1")))

        self.assertIn(body, {b"internal error", b"fine"})
        self.assertEqual(len(session.calls), 1)

    def test_retries_same_endpoint_with_backoff_before_success(self) -> None:
        session = FakeSession()
        session.failures_before_success["a:1"] = 2
        session.route("GET", "http://a:1/x", b"late")
        clock = FakeClock()
        dispatcher, _ = make_dispatcher(session, clock)

        body = dispatcher.dispatch(RequestSpec("GET", "x"), EndpointPool("coordinators", ("a:1",)))

        self.assertEqual(body, b"late")
        self.assertEqual(clock.sleeps, [1.0, 1.0])
        self.assertEqual(len(session.calls), 3)

    def test_all_endpoints_unreachable_is_terminal(self) -> None:
        session = FakeSession()
        session.down = {"a:1", "b:1"}
        clock = FakeClock()
        dispatcher, handler = make_dispatcher(session, clock)

        with self.assertRaises(TransportExhaustedError) as ctx:
            dispatcher.dispatch(RequestSpec("GET", "x"), EndpointPool("storage_managers", ("a:1", "b:1")), 3)

        self.assertEqual(sorted(ctx.exception.attempted), ["a:1", "b:1"])
        self.assertEqual(ctx.exception.exit_code, 1)
        self.assertEqual(len(session.calls), 6)
        self.assertEqual(handler.messages().count("request_attempt"), 2)
        self.assertEqual(handler.messages().count("endpoint_exhausted"), 2)

    def test_scheme_body_and_content_type(self) -> None:
        session = FakeSession()
        session.route("POST", "https://a:1/form", b"ok")
        dispatcher, _ = make_dispatcher(session, FakeClock(), development=False)

        spec = RequestSpec("POST", "form", body=b"status=ok", content_type="application/x-www-form-urlencoded")
        dispatcher.dispatch(spec, EndpointPool("coordinators", ("a:1",)))

        call = session.calls[0]
        self.assertEqual(call.url, "https://a:1/form")
        self.assertEqual(call.data, b"status=ok")
        self.assertEqual(call.headers["Content-Type"], "application/x-www-form-urlencoded")

    def test_empty_pool_is_rejected(self) -> None:
        dispatcher, _ = make_dispatcher(FakeSession(), FakeClock())
        with self.assertRaises(ValueError):
            dispatcher.dispatch(RequestSpec("GET", "x"), EndpointPool("coordinators", ()))


class SessionTest(unittest.TestCase):
    def test_session_uses_basic_auth_and_insecure_flag(self) -> None:
        config = make_config(
            Path("."),
            transport=TransportConfig(development=False, insecure_ssl=True),
        )
        session = build_session(config)
        self.assertEqual(session.auth, ("alice", "secret"))
        self.assertFalse(session.verify)

    def test_session_trusts_custom_certificate(self) -> None:
        with TemporaryDirectory() as temp_dir:
            certificate = Path(temp_dir) / "ca.pem"
            certificate.write_text("-----BEGIN CERTIFICATE-----\n", encoding="utf-8")
            config = make_config(Path(temp_dir), transport=TransportConfig(certificate_path=certificate))
            session = build_session(config)
        self.assertEqual(session.verify, str(certificate))

    def test_missing_certificate_is_rejected(self) -> None:
        with TemporaryDirectory() as temp_dir:
            missing = Path(temp_dir) / "missing.pem"
            config = make_config(Path(temp_dir), transport=TransportConfig(certificate_path=missing))
            with self.assertRaisesRegex(ValueError, "certificate not found"):
                build_session(config)

    def test_insecure_flag_wins_over_certificate(self) -> None:
        with TemporaryDirectory() as temp_dir:
            certificate = Path(temp_dir) / "ca.pem"
            certificate.write_text("-----BEGIN CERTIFICATE-----\n", encoding="utf-8")
            config = make_config(
                Path(temp_dir),
                transport=TransportConfig(insecure_ssl=True, certificate_path=certificate),
            )
            session = build_session(config)
        self.assertFalse(session.verify)


if __name__ == "__main__":
    unittest.main()
