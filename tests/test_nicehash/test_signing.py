"""Tests for NiceHash request signing.

Tests verify:
- X-Auth value is "{key}:{hmac}" over the null-separated canonical message
- Signing is deterministic and any single changed field changes the signature
- Query and body serialization match what is transmitted
- Malformed inputs raise instead of being coerced
"""

import hashlib
import hmac

import pytest

from rigpilot.nicehash.signing import (
    NONCE_LENGTH,
    create_nonce,
    serialize_body,
    serialize_query,
    sign,
)

KEY = "4ebd366d-76f4-4400-a3b6-e51515d054d6"
SECRET = "fd8a1652-728b-42fe-82b8-f623e56da8850750f5bf-ce66-4ca7-8b84-93651abc723b"
ORG = "da41b3bc-3d0b-4226-b7ea-aee73f94a518"
NONCE = "9675d0f8-1325-484b-9594-c9d6d3268890"
TIME = 1543597115712

BASE = dict(
    api_key=KEY,
    api_secret=SECRET,
    time_ms=TIME,
    nonce=NONCE,
    org_id=ORG,
    method="GET",
    path="/main/api/v2/hashpower/orderBook",
    query={"algorithm": "X16R", "page": 0, "size": 100},
)


def _expected(message: str) -> str:
    digest = hmac.new(SECRET.encode(), message.encode(), hashlib.sha256).hexdigest()
    return f"{KEY}:{digest}"


class TestSign:
    def test_canonical_message_without_body(self) -> None:
        message = "\0".join([
            KEY,
            str(TIME),
            NONCE,
            "",
            ORG,
            "",
            "GET",
            "/main/api/v2/hashpower/orderBook",
            "algorithm=X16R&page=0&size=100",
        ])
        assert sign(**BASE) == _expected(message)

    def test_canonical_message_with_body(self) -> None:
        body = {"rigId": "rig-1", "action": "START"}
        signature = sign(**{**BASE, "method": "POST", "query": None, "body": body})
        message = "\0".join([
            KEY, str(TIME), NONCE, "", ORG, "", "POST",
            "/main/api/v2/hashpower/orderBook", "",
        ]) + '\0{"rigId":"rig-1","action":"START"}'
        assert signature == _expected(message)

    def test_prefix_is_api_key(self) -> None:
        assert sign(**BASE).startswith(f"{KEY}:")
        assert len(sign(**BASE).split(":", 1)[1]) == 64

    def test_deterministic(self) -> None:
        assert sign(**BASE) == sign(**BASE)

    @pytest.mark.parametrize(
        "override",
        [
            {"method": "POST"},
            {"path": "/main/api/v2/hashpower/orderBook2"},
            {"query": {"algorithm": "X16R", "page": 1, "size": 100}},
            {"query": {"algorithm": "X16R", "page": 0}},
            {"body": {"a": 1}},
            {"nonce": NONCE[:-1] + "1"},
            {"time_ms": TIME + 1},
            {"org_id": ""},
        ],
    )
    def test_single_field_change_changes_signature(self, override: dict) -> None:
        assert sign(**{**BASE, **override}) != sign(**BASE)

    def test_body_byte_change_changes_signature(self) -> None:
        a = sign(**{**BASE, "body": '{"a":1}'})
        b = sign(**{**BASE, "body": '{"a":2}'})
        assert a != b

    def test_string_query_signed_verbatim(self) -> None:
        assert sign(**{**BASE, "query": "algorithm=X16R&page=0&size=100"}) == sign(**BASE)

    def test_missing_org_leaves_field_blank(self) -> None:
        assert sign(**{**BASE, "org_id": None}) == sign(**{**BASE, "org_id": ""})

    @pytest.mark.parametrize("field", ["api_key", "api_secret", "nonce", "method", "path"])
    def test_non_string_fields_rejected(self, field: str) -> None:
        with pytest.raises(TypeError):
            sign(**{**BASE, field: 123})


class TestSerialization:
    def test_query_keeps_insertion_order(self) -> None:
        assert serialize_query({"b": 1, "a": 2}) == "b=1&a=2"

    def test_query_percent_encodes_spaces_and_slashes(self) -> None:
        assert serialize_query({"q": "a b/c"}) == "q=a%20b%2Fc"

    def test_query_skips_none_and_lowercases_bools(self) -> None:
        assert serialize_query({"a": None, "b": True, "c": False}) == "b=true&c=false"

    def test_query_rejects_other_types(self) -> None:
        with pytest.raises(TypeError):
            serialize_query(["a", "b"])  # type: ignore[arg-type]

    def test_body_compact_json(self) -> None:
        assert serialize_body({"rigId": "r", "options": ["LOW"]}) == '{"rigId":"r","options":["LOW"]}'

    def test_body_keeps_unicode(self) -> None:
        assert serialize_body({"name": "Ферма"}) == '{"name":"Ферма"}'

    def test_empty_inputs(self) -> None:
        assert serialize_query(None) == ""
        assert serialize_body(None) == ""


class TestNonce:
    def test_length_and_alphabet(self) -> None:
        nonce = create_nonce()
        assert len(nonce) == NONCE_LENGTH
        assert nonce.isalnum()
        assert nonce == nonce.lower()

    def test_unique(self) -> None:
        assert len({create_nonce() for _ in range(100)}) == 100
