"""
test/test_repository.py — Tests for nebula_repository.CloudRepository

Runs every operation against the in-memory FakeCloud server.

Run:  python test/test_repository.py
"""

import asyncio
import logging
import os
import sys

import httpx
from pydantic import ValidationError

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fake_cloud import BASE_URL, FakeCloud
from nebula_core.config import RepositorySettings, RequestPolicy
from nebula_core.errors import PAYLOAD_EXCERPT_LENGTH, ExceptionKind, RepositoryError
from nebula_core.notary import LocalNotary
from nebula_core.resources import HttpMethod, ResourceKind
from nebula_repository import CloudRepository


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PASS = 0
_FAIL = 0


def _ok(name: str) -> None:
    global _PASS
    _PASS += 1
    print(f"  PASS: {name}")


def _fail(name: str, err: Exception) -> None:
    global _FAIL
    _FAIL += 1
    print(f"  FAIL: {name} — {err}")


def _make_repository(debug: bool = False, policy: RequestPolicy = None):
    """Create a repository client wired to a fresh fake server."""
    notary = LocalNotary()
    cloud = FakeCloud(notary.certificate)
    repository = CloudRepository(
        notary, BASE_URL, debug=debug, policy=policy, transport=cloud.transport(),
    )
    return repository, cloud


def _expect_unexpected(coro) -> RepositoryError:
    try:
        asyncio.run(coro)
    except RepositoryError as e:
        assert e.kind == ExceptionKind.UNEXPECTED, e
        return e
    raise AssertionError("Expected an unexpected RepositoryError")


async def _expect_unexpected_async(coro) -> RepositoryError:
    try:
        await coro
    except RepositoryError as e:
        assert e.kind == ExceptionKind.UNEXPECTED, e
        return e
    raise AssertionError("Expected an unexpected RepositoryError")


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

def test_document_scenario():
    """create → exists → fetch → duplicate create is rejected."""
    repository, cloud = _make_repository()

    async def scenario():
        assert await repository.document_exists("D1") is False
        assert await repository.fetch_document("D1") is None
        assert await repository.create_document("D1", "[$foo:1]") is None
        assert await repository.document_exists("D1") is True
        assert await repository.fetch_document("D1") == "[$foo:1]"

    asyncio.run(scenario())

    e = _expect_unexpected(repository.create_document("D1", "[$foo:1]"))
    assert e.context.function == "create_document"
    assert e.context.identifier == "D1"
    assert e.context.payload == "[$foo:1]"
    rejected = e.find(ExceptionKind.INVALID_REQUEST)
    assert rejected is not None
    assert rejected.context.status == 409
    assert rejected.context.url == BASE_URL + "document/D1"

    # the original content survived
    assert asyncio.run(repository.fetch_document("D1")) == "[$foo:1]"
    _ok("test_document_scenario")


def test_draft_scenario():
    """save → fetch → replace → delete → fetch is absent."""
    repository, cloud = _make_repository()

    async def scenario():
        assert await repository.draft_exists("T1", "v1") is False
        await repository.save_draft("T1", "v1", "[$x:1]")
        assert await repository.fetch_draft("T1", "v1") == "[$x:1]"
        await repository.save_draft("T1", "v1", "[$x:2]")
        assert await repository.fetch_draft("T1", "v1") == "[$x:2]"
        assert await repository.fetch_draft("T1", "v2") is None
        assert await repository.delete_draft("T1", "v1") is True
        assert await repository.fetch_draft("T1", "v1") is None
        assert await repository.draft_exists("T1", "v1") is False
        assert await repository.delete_draft("T1", "v1") is False

    asyncio.run(scenario())
    assert cloud.requests[1].url.path == "/draft/T1/v1"
    _ok("test_draft_scenario")


def test_certificates_and_types_are_immutable():
    repository, cloud = _make_repository()

    async def create_all():
        await repository.create_certificate("C1", "[$publicKey:'ABC']")
        await repository.create_type("Y1", "[$type:$Money]")
        assert await repository.certificate_exists("C1") is True
        assert await repository.type_exists("Y1") is True
        assert await repository.fetch_certificate("C1") == "[$publicKey:'ABC']"
        assert await repository.fetch_type("Y1") == "[$type:$Money]"
        assert await repository.certificate_exists("C2") is False
        assert await repository.fetch_type("Y2") is None

    asyncio.run(create_all())

    e = _expect_unexpected(repository.create_certificate("C1", "[$publicKey:'XYZ']"))
    assert e.find(ExceptionKind.INVALID_REQUEST).context.status == 409
    e = _expect_unexpected(repository.create_type("Y1", "[$type:$Other]"))
    assert e.find(ExceptionKind.INVALID_REQUEST) is not None

    assert asyncio.run(repository.fetch_certificate("C1")) == "[$publicKey:'ABC']"
    assert asyncio.run(repository.fetch_type("Y1")) == "[$type:$Money]"
    _ok("test_certificates_and_types_are_immutable")


def test_queue_round_trip():
    repository, cloud = _make_repository()

    async def scenario():
        assert await repository.dequeue_message("Q1") is None
        await repository.queue_message("Q1", "[$product:\"Snickers Bar\"]")
        assert await repository.dequeue_message("Q1") == "[$product:\"Snickers Bar\"]"
        assert await repository.dequeue_message("Q1") is None

        messages = {f"[$n:{i}]" for i in range(3)}
        for message in messages:
            await repository.queue_message("Q2", message)
        received = set()
        message = await repository.dequeue_message("Q2")
        while message is not None:
            received.add(message)
            message = await repository.dequeue_message("Q2")
        assert received == messages

    asyncio.run(scenario())
    _ok("test_queue_round_trip")


def test_concurrent_operations():
    repository, cloud = _make_repository()

    async def scenario():
        await asyncio.gather(*(
            repository.create_document(f"D{i}", f"[$i:{i}]") for i in range(10)
        ))
        results = await asyncio.gather(*(
            repository.fetch_document(f"D{i}") for i in range(10)
        ))
        assert results == [f"[$i:{i}]" for i in range(10)]

    asyncio.run(scenario())
    tags = {c.document.parameters.tag for c in cloud.credentials}
    assert len(tags) == len(cloud.credentials) == 20
    _ok("test_concurrent_operations")


def test_every_request_is_authenticated():
    repository, cloud = _make_repository()
    asyncio.run(repository.document_exists("D1"))
    asyncio.run(repository.save_draft("T1", "v1", "[$x:1]"))
    assert len(cloud.credentials) == 2
    for credentials in cloud.credentials:
        assert credentials.document.parameters.permissions == "$Private"
        assert credentials.signature.signer == repository.account
    _ok("test_every_request_is_authenticated")


def test_foreign_notary_is_rejected():
    notary = LocalNotary()
    cloud = FakeCloud(LocalNotary().certificate)
    repository = CloudRepository(notary, BASE_URL, transport=cloud.transport())
    e = _expect_unexpected(repository.document_exists("D1"))
    assert e.find(ExceptionKind.INVALID_REQUEST).context.status == 401
    _ok("test_foreign_notary_is_rejected")


def test_server_error_exposes_status_and_url():
    repository, cloud = _make_repository()
    cloud.fail_status = 500
    e = _expect_unexpected(repository.fetch_type("Y1"))
    assert e.context.account == repository.account
    assert e.context.url == BASE_URL
    cause = e.cause
    assert isinstance(cause, RepositoryError)
    assert cause.kind == ExceptionKind.INVALID_REQUEST
    assert cause.context.status == 500
    assert cause.context.url == BASE_URL + "type/Y1"
    assert isinstance(e.root_cause(), httpx.HTTPStatusError)
    _ok("test_server_error_exposes_status_and_url")


def test_unreachable_server_is_server_down():
    repository, cloud = _make_repository()
    cloud.fail_with = lambda r: httpx.ConnectError("connection refused", request=r)
    e = _expect_unexpected(repository.certificate_exists("C1"))
    assert e.cause.kind == ExceptionKind.SERVER_DOWN
    assert len(cloud.requests) == 1  # no retries by default
    _ok("test_unreachable_server_is_server_down")


def test_not_found_never_raises():
    repository, cloud = _make_repository()

    async def scenario():
        assert await repository.certificate_exists("nope") is False
        assert await repository.fetch_certificate("nope") is None
        assert await repository.type_exists("nope") is False
        assert await repository.fetch_draft("nope", "v1") is None
        assert await repository.delete_draft("nope", "v1") is False
        assert await repository.dequeue_message("nope") is None

    asyncio.run(scenario())
    _ok("test_not_found_never_raises")


def test_invalid_combination_makes_no_network_call():
    repository, cloud = _make_repository()
    for kind, method in (
        (ResourceKind.QUEUE, HttpMethod.DELETE),
        (ResourceKind.DOCUMENT, HttpMethod.PUT),
        (ResourceKind.CERTIFICATE, HttpMethod.DELETE),
        (ResourceKind.TYPE, HttpMethod.PUT),
        (ResourceKind.DRAFT, HttpMethod.POST),
    ):
        e = _expect_unexpected(
            repository._call("invalid", kind, method, "X1", text="invalid call")
        )
        assert e.cause.kind == ExceptionKind.INVALID_PARAMETER
    assert cloud.requests == []
    _ok("test_invalid_combination_makes_no_network_call")


def test_identifier_cannot_leave_its_kind():
    repository, cloud = _make_repository()

    async def scenario():
        await repository.save_draft("T1", "v1", "[$draft:1]")
        sent = len(cloud.requests)
        for identifier in ("../draft/T1/v1", "./D1", "D1/", "a//b"):
            e = await _expect_unexpected_async(repository.document_exists(identifier))
            assert e.cause.kind == ExceptionKind.INVALID_PARAMETER
        assert len(cloud.requests) == sent

        await repository.create_document("a?b#c", "[$doc:1]")
        assert cloud.requests[-1].url.raw_path == b"/document/a%3Fb%23c"
        assert cloud.stores["document"] == {"a?b#c": "[$doc:1]"}
        assert await repository.fetch_document("a?b#c") == "[$doc:1]"
        assert await repository.document_exists("a") is False

    asyncio.run(scenario())
    _ok("test_identifier_cannot_leave_its_kind")


def test_payload_is_truncated_in_error():
    repository, cloud = _make_repository()
    cloud.fail_status = 400
    payload = "[$data:'" + "A" * 500 + "']"
    e = _expect_unexpected(repository.queue_message("Q1", payload))
    assert e.context.payload.endswith("...")
    assert len(e.context.payload) == PAYLOAD_EXCERPT_LENGTH + 3
    assert e.to_dict()["cause"]["status"] == 400
    _ok("test_payload_is_truncated_in_error")


def test_debug_logs_before_raising():
    logger = logging.getLogger("nebula_repository")
    handler = _ListHandler()
    logger.addHandler(handler)
    try:
        quiet, cloud = _make_repository(debug=False)
        cloud.fail_status = 500
        _expect_unexpected(quiet.fetch_document("D1"))
        assert handler.records == []

        loud, cloud = _make_repository(debug=True)
        cloud.fail_status = 500
        _expect_unexpected(loud.fetch_document("D1"))
        assert len(handler.records) == 1
        record = handler.records[0]
        assert record.levelno == logging.ERROR
        assert "fetch_document" in record.getMessage()
        assert record.error["exception"] == "unexpected"
    finally:
        logger.removeHandler(handler)
    _ok("test_debug_logs_before_raising")


def test_retry_policy_recovers_from_server_down():
    policy = RequestPolicy(max_retries=2, retry_delay_ms=0)
    repository, cloud = _make_repository(policy=policy)
    cloud.fail_with = lambda r: httpx.ReadTimeout("timed out", request=r)
    cloud.fail_remaining = 2

    assert asyncio.run(repository.document_exists("D1")) is False
    assert len(cloud.requests) == 3
    assert len(cloud.credentials) == 1
    _ok("test_retry_policy_recovers_from_server_down")


def test_retry_policy_gives_up():
    policy = RequestPolicy(max_retries=2, retry_delay_ms=0)
    repository, cloud = _make_repository(policy=policy)
    cloud.fail_with = lambda r: httpx.ConnectError("refused", request=r)
    e = _expect_unexpected(repository.fetch_document("D1"))
    assert e.cause.kind == ExceptionKind.SERVER_DOWN
    assert len(cloud.requests) == 3
    headers = {r.headers["Nebula-Credentials"] for r in cloud.requests}
    assert len(headers) == 3  # a fresh credential per attempt
    _ok("test_retry_policy_gives_up")


def test_rejections_are_not_retried():
    policy = RequestPolicy(max_retries=3, retry_delay_ms=0)
    repository, cloud = _make_repository(policy=policy)
    cloud.fail_status = 503
    _expect_unexpected(repository.fetch_document("D1"))
    assert len(cloud.requests) == 1
    _ok("test_rejections_are_not_retried")


def test_notary_failure_is_wrapped():
    class BrokenNotary:
        def get_account(self):
            return "did:key:zBroken"

        async def get_citation(self):
            raise RuntimeError("key store locked")

        async def notarize_document(self, document):
            raise AssertionError("not reached")

    repository = CloudRepository(BrokenNotary(), BASE_URL)
    e = _expect_unexpected(repository.type_exists("Y1"))
    assert isinstance(e.cause, RuntimeError)
    assert e.context.account == "did:key:zBroken"
    _ok("test_notary_failure_is_wrapped")


def test_attributes_and_settings():
    notary = LocalNotary()
    repository = CloudRepository(notary, "https://repository.test")
    assert repository.get_url() == "https://repository.test/"
    assert '"module":"CloudRepository"' in str(repository)
    assert notary.get_account() in str(repository)

    try:
        CloudRepository(notary, "ftp://repository.test/")
        raise AssertionError("Expected ValueError")
    except ValueError:
        pass

    settings = RepositorySettings(
        url="https://cloud.example/api", debug=True, timeout_seconds=5, max_retries=1,
        _env_file=None,
    )
    repository = CloudRepository.from_settings(notary, settings)
    assert repository.get_url() == "https://cloud.example/api/"
    assert repository.policy.timeout_seconds == 5
    assert repository.policy.max_retries == 1

    os.environ["NEBULA_URL"] = "http://localhost:8080"
    try:
        assert RepositorySettings(_env_file=None).url == "http://localhost:8080/"
        assert RepositorySettings(_env_file=None).to_policy() == RequestPolicy()
    finally:
        del os.environ["NEBULA_URL"]
    _ok("test_attributes_and_settings")


def test_settings_share_policy_fields():
    assert set(RequestPolicy.model_fields) <= set(RepositorySettings.model_fields)

    os.environ["NEBULA_URL"] = "http://localhost:8080"
    os.environ["NEBULA_MAX_RETRIES"] = "3"
    os.environ["NEBULA_TIMEOUT_SECONDS"] = "1.5"
    try:
        policy = RepositorySettings(_env_file=None).to_policy()
        assert type(policy) is RequestPolicy
        assert policy == RequestPolicy(max_retries=3, timeout_seconds=1.5)

        os.environ["NEBULA_MAX_RETRIES"] = "11"
        try:
            RepositorySettings(_env_file=None)
            raise AssertionError("Expected ValidationError")
        except ValidationError:
            pass
    finally:
        for name in ("NEBULA_URL", "NEBULA_MAX_RETRIES", "NEBULA_TIMEOUT_SECONDS"):
            del os.environ[name]
    _ok("test_settings_share_policy_fields")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    print("=" * 60)
    print("Nebula Repository Tests")
    print("=" * 60)

    tests = [
        test_document_scenario,
        test_draft_scenario,
        test_certificates_and_types_are_immutable,
        test_queue_round_trip,
        test_concurrent_operations,
        test_every_request_is_authenticated,
        test_foreign_notary_is_rejected,
        test_server_error_exposes_status_and_url,
        test_unreachable_server_is_server_down,
        test_not_found_never_raises,
        test_invalid_combination_makes_no_network_call,
        test_identifier_cannot_leave_its_kind,
        test_payload_is_truncated_in_error,
        test_debug_logs_before_raising,
        test_retry_policy_recovers_from_server_down,
        test_retry_policy_gives_up,
        test_rejections_are_not_retried,
        test_notary_failure_is_wrapped,
        test_attributes_and_settings,
        test_settings_share_policy_fields,
    ]

    for t in tests:
        try:
            t()
        except Exception as e:
            _fail(t.__name__, e)

    print("=" * 60)
    if _FAIL == 0:
        print(f"ALL {_PASS} TESTS PASSED")
    else:
        print(f"{_PASS} passed, {_FAIL} FAILED")
        sys.exit(1)
    print("=" * 60)
