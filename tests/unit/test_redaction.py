"""Tests for context redaction."""

import json
from types import SimpleNamespace

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vigilpy.core.redaction import CIRCULAR, REDACTED, is_sensitive, redact

SECRET_KEYS = [
    "password",
    "userPassword",
    "access_token",
    "api_key",
    "apiKey",
    "client_secret",
    "private_key",
    "mnemonic",
    "ssn",
    "credit_card",
    "cvv",
]

_safe_text = st.text(alphabet="abcdefghijklmnoqruvwxyz0123456789 ", max_size=12)

_contexts = st.recursive(
    st.one_of(st.none(), st.integers(), st.booleans(), _safe_text),
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(
            st.one_of(_safe_text, st.sampled_from(SECRET_KEYS)), children, max_size=4
        ),
    ),
    max_leaves=20,
)

_objects = st.recursive(
    st.one_of(st.none(), st.integers(), _safe_text),
    lambda children: st.one_of(
        st.lists(children, max_size=3),
        st.dictionaries(
            st.one_of(_safe_text, st.sampled_from(SECRET_KEYS)),
            children,
            min_size=1,
            max_size=3,
        ).map(lambda attrs: SimpleNamespace(**attrs)),
    ),
    max_leaves=12,
)


def _leaked_secret_keys(value: object) -> list[str]:
    """Return secret-like keys whose value survived redaction."""
    leaked: list[str] = []
    if isinstance(value, dict):
        for key, inner in value.items():
            if is_sensitive(key) and inner != REDACTED:
                leaked.append(key)
            leaked.extend(_leaked_secret_keys(inner))
    elif isinstance(value, list):
        for inner in value:
            leaked.extend(_leaked_secret_keys(inner))
    return leaked


class TestIsSensitive:
    @pytest.mark.tra("Core.Redaction.Patterns")
    @pytest.mark.tier(0)
    @pytest.mark.core
    @pytest.mark.parametrize("key", SECRET_KEYS)
    def test_sensitive_terms_match(self, key: str) -> None:
        assert is_sensitive(key)

    @pytest.mark.tra("Core.Redaction.Patterns")
    @pytest.mark.tier(0)
    @pytest.mark.core
    @pytest.mark.parametrize("key", ["user_id", "amount", "endpoint", "status"])
    def test_ordinary_keys_do_not_match(self, key: str) -> None:
        assert not is_sensitive(key)


class TestRedact:
    @pytest.mark.tra("Core.Redaction.Keys")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_sensitive_keys_are_masked(self) -> None:
        result = redact({"password": "hunter2", "user": "alice"})

        assert result == {"password": REDACTED, "user": "alice"}

    @pytest.mark.tra("Core.Redaction.Values")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_sensitive_string_values_are_masked(self) -> None:
        result = redact({"note": "reset token sent", "other": "fine"})

        assert result == {"note": REDACTED, "other": "fine"}

    @pytest.mark.tra("Core.Redaction.Nested")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_nested_mappings_and_sequences(self) -> None:
        context = {
            "user": {"profile": {"api_key": "abc"}},
            "items": [{"cvv": "123"}, ("ok", {"secret": "x"})],
        }

        result = redact(context)

        assert result == {
            "user": {"profile": {"api_key": REDACTED}},
            "items": [{"cvv": REDACTED}, ["ok", {"secret": REDACTED}]],
        }

    @pytest.mark.tra("Core.Redaction.Immutable")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_input_is_not_modified(self) -> None:
        context = {"password": "hunter2", "nested": {"token": "t"}}

        redact(context)

        assert context == {"password": "hunter2", "nested": {"token": "t"}}

    @pytest.mark.tra("Core.Redaction.Cycles")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_cycles_are_marked(self) -> None:
        context: dict[str, object] = {"name": "loop"}
        context["self"] = context

        result = redact(context)

        assert result == {"name": "loop", "self": CIRCULAR}

    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_none_passes_through(self) -> None:
        assert redact(None) is None

    @pytest.mark.tra("Core.Redaction.Completeness")
    @pytest.mark.tier(0)
    @pytest.mark.core
    @given(context=st.dictionaries(st.sampled_from(SECRET_KEYS) | _safe_text, _contexts))
    def test_no_secret_key_survives_at_any_depth(self, context: dict) -> None:
        result = redact(context)

        assert _leaked_secret_keys(result) == []
        json.dumps(result)


class _Credentials:
    __slots__ = ("user", "api_key")

    def __init__(self, user: str, api_key: str) -> None:
        self.user = user
        self.api_key = api_key


class _Opaque:
    def __repr__(self) -> str:
        return "Session(token='abc123')"


class TestRedactObjects:
    @pytest.mark.tra("Core.Redaction.Objects")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_object_attributes_are_walked(self) -> None:
        result = redact({"user": SimpleNamespace(name="alice", password="hunter2")})

        assert result == {"user": {"name": "alice", "password": REDACTED}}

    @pytest.mark.tra("Core.Redaction.Objects")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_slotted_attributes_are_walked(self) -> None:
        result = redact({"creds": _Credentials("alice", "sk-live-1")})

        assert result == {"creds": {"user": "alice", "api_key": REDACTED}}

    @pytest.mark.tra("Core.Redaction.Objects")
    @pytest.mark.tier(0)
    @pytest.mark.core
    def test_opaque_values_with_secret_repr_are_masked(self) -> None:
        plain = object()

        result = redact({"session": _Opaque(), "marker": plain})

        assert result == {"session": REDACTED, "marker": plain}

    @pytest.mark.tra("Core.Redaction.Completeness")
    @pytest.mark.tier(0)
    @pytest.mark.core
    @given(context=st.dictionaries(st.sampled_from(SECRET_KEYS) | _safe_text, _objects))
    def test_no_secret_attribute_survives(self, context: dict) -> None:
        result = redact(context)

        assert _leaked_secret_keys(result) == []
        json.dumps(result)
