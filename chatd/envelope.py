from __future__ import annotations

from .constants import K_BODY, K_SRC, K_T, K_V, PROTOCOL_VERSION


def make_envelope(msg_type: int, *, src: int, body: str | None = None) -> dict:
    env: dict[int, object] = {
        K_V: PROTOCOL_VERSION,
        K_T: int(msg_type),
        K_SRC: int(src),
    }
    if body:
        env[K_BODY] = body
    return env


def validate_envelope(env: dict) -> None:
    if not isinstance(env, dict):
        raise TypeError("envelope must be a CBOR map (dict)")

    for k in env.keys():
        if not isinstance(k, int):
            raise TypeError("envelope keys must be integers")
        if k < 0:
            raise ValueError("envelope keys must be unsigned integers")

    for k in (K_V, K_T, K_SRC):
        if k not in env:
            raise ValueError(f"missing envelope key {k}")

    v = env[K_V]
    if not isinstance(v, int):
        raise TypeError("protocol version must be an integer")
    if v != PROTOCOL_VERSION:
        raise ValueError(f"unsupported version {v}")

    t = env[K_T]
    if not isinstance(t, int):
        raise TypeError("message type must be an integer")

    src = env[K_SRC]
    if not isinstance(src, int) or isinstance(src, bool):
        raise TypeError("sender id must be an integer")
    if src < 0:
        raise ValueError("sender id must be unsigned")

    if K_BODY in env and not isinstance(env[K_BODY], str):
        raise TypeError("body must be a string")
