from __future__ import annotations

from tracedock.services.fingerprint import (
    _rolling_hash,
    _to_base36,
    first_app_frame,
    fingerprint,
    normalize_message,
    stack_trace_preview,
)

STACK = "\n".join(
    [
        "Error: Connection refused",
        "    at Socket.connect (node_modules/pg/lib/client.js:132:7)",
        "    at connectDb (src/db.js:10:4)",
        "    at main (src/index.js:3:1)",
    ]
)


def test_normalize_message_replaces_variable_parts() -> None:
    msg = "User 42 at 0x1f failed: '550e8400-e29b-41d4-a716-446655440000' \"admin\""
    assert normalize_message(msg) == "User <NUM> at <HEX> failed: '<STR>' \"<STR>\""


def test_normalize_message_replaces_bare_uuid() -> None:
    assert normalize_message("order 550E8400-E29B-41D4-A716-446655440000 missing") == "order <UUID> missing"


def test_normalize_message_keeps_digits_inside_words() -> None:
    assert normalize_message("  http2 stream v8 reset ") == "http2 stream v8 reset"


def test_normalize_message_handles_empty() -> None:
    assert normalize_message("") == ""
    assert normalize_message(None) == ""


def test_first_app_frame_skips_dependencies_and_masks_position() -> None:
    assert first_app_frame(STACK) == "at connectDb (src/db.js:<LINE>:<COL>)"


def test_first_app_frame_skips_python_site_packages() -> None:
    stack = "at handler (/usr/lib/python3/site-packages/x.py:1:2)\nat view (app/views.py:88:12)"
    assert first_app_frame(stack) == "at view (app/views.py:<LINE>:<COL>)"


def test_first_app_frame_without_qualifying_frame() -> None:
    assert first_app_frame(None) == ""
    assert first_app_frame("Error: boom\n    at x (node_modules/a.js:1:1)") == ""


def test_fingerprint_is_deterministic() -> None:
    assert fingerprint("Connection refused", STACK, "svc") == fingerprint("Connection refused", STACK, "svc")


def test_fingerprint_collapses_numbers() -> None:
    assert fingerprint("User 42 failed", None, "app") == fingerprint("User 99 failed", None, "app")


def test_fingerprint_ignores_line_numbers_of_app_frame() -> None:
    moved = STACK.replace("src/db.js:10:4", "src/db.js:12:9")
    assert fingerprint("Connection refused", STACK, "svc") == fingerprint("Connection refused", moved, "svc")


def test_fingerprint_differs_per_app() -> None:
    assert fingerprint("Connection refused", STACK, "app1") != fingerprint("Connection refused", STACK, "app2")


def test_fingerprint_differs_per_app_frame() -> None:
    other = STACK.replace("connectDb (src/db.js", "connectCache (src/cache.js")
    assert fingerprint("Connection refused", STACK, "svc") != fingerprint("Connection refused", other, "svc")


def test_fingerprint_of_empty_inputs() -> None:
    # "||" -> 124 * 31 + 124 = 3968 -> base36 "328"
    assert fingerprint("", None, "") == "328"


def test_rolling_hash_wraps_to_int32() -> None:
    assert _rolling_hash("a") == 97
    assert _rolling_hash("polygenelubricants") == -(2**31)


def test_fingerprint_uses_absolute_value_in_base36() -> None:
    assert _to_base36(0) == "0"
    assert _to_base36(35) == "z"
    assert _to_base36(2**31) == "zik0zk"


def test_stack_trace_preview_keeps_three_lines() -> None:
    assert stack_trace_preview(STACK) == "\n".join(STACK.split("\n")[:3])
    assert stack_trace_preview("") is None
    assert stack_trace_preview(None) is None
