import pytest

from chatd.constants import K_BODY, K_SRC, K_T, K_V, PROTOCOL_VERSION, T_BLOCK, T_TEXT
from chatd.envelope import make_envelope, validate_envelope


def test_validate_accepts_make_envelope() -> None:
    env = make_envelope(T_TEXT, src=1, body="hi")
    validate_envelope(env)


def test_empty_body_is_omitted() -> None:
    env = make_envelope(T_TEXT, src=1, body="")
    assert K_BODY not in env
    validate_envelope(env)


def test_validate_rejects_missing_required_key() -> None:
    env = make_envelope(T_BLOCK, src=1, body="bob")
    env.pop(K_SRC)
    with pytest.raises(ValueError):
        validate_envelope(env)


def test_validate_rejects_wrong_version() -> None:
    env = make_envelope(T_TEXT, src=1)
    env[K_V] = PROTOCOL_VERSION + 1
    with pytest.raises(ValueError):
        validate_envelope(env)


def test_validate_rejects_non_integer_keys() -> None:
    env = make_envelope(T_TEXT, src=1)
    env["1"] = env.pop(K_T)
    with pytest.raises(TypeError):
        validate_envelope(env)


def test_validate_rejects_non_map() -> None:
    with pytest.raises(TypeError):
        validate_envelope(["not", "a", "map"])


def test_validate_allows_unknown_extension_keys() -> None:
    env = make_envelope(T_TEXT, src=1)
    env[64] = {"future": True}
    validate_envelope(env)


def test_validate_rejects_wrong_field_types() -> None:
    env = make_envelope(T_TEXT, src=1)
    env[K_SRC] = "not-int"
    with pytest.raises(TypeError):
        validate_envelope(env)

    env = make_envelope(T_TEXT, src=1)
    env[K_SRC] = -1
    with pytest.raises(ValueError):
        validate_envelope(env)

    env = make_envelope(T_TEXT, src=1)
    env[K_BODY] = b"bytes"
    with pytest.raises(TypeError):
        validate_envelope(env)
