"""
toolkit のテスト。

壊れやすい「設定まわり」（bool / .env / 優先順位）と、
副作用（JSON保存 / POST）の成否判定を押さえる。
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

import toolkit


def test_parse_bool_truthy_and_falsey() -> None:
    # テスト意図：env 文字列を bool に解釈するルールが想定どおりか確認する
    assert toolkit.parse_bool("1") is True
    assert toolkit.parse_bool("true") is True
    assert toolkit.parse_bool("YES") is True
    assert toolkit.parse_bool(" on ") is True

    assert toolkit.parse_bool("0") is False
    assert toolkit.parse_bool("false") is False
    assert toolkit.parse_bool("No") is False
    assert toolkit.parse_bool("off") is False


def test_parse_provided_options_stops_at_double_dash() -> None:
    provided = toolkit.parse_provided_options(["a.md", "--json", "--timeout=3", "-s", "01.01.2020", "--", "--out"])
    assert provided == {"--json", "--timeout"}
    assert toolkit.parse_provided_options(None) == set()


def test_load_env_file_parses_key_value_and_ignores_comments(tmp_path: Path) -> None:
    # テスト意図：空行/コメントは無視、export を許容、クォートを剥がす、KEY=VALUE のみ読む
    env_path = tmp_path / ".env"
    env_path.write_text(
        "\n".join(
            [
                "# comment",
                "",
                "export WORKOUTSUM_START=01.01.2020",
                "WORKOUTSUM_JSON=true",
                "WORKOUTSUM_OUT='out.json'",
                'WORKOUTSUM_POST="http://localhost/x"',
                "NO_EQUAL_SIGN",
            ]
        ),
        encoding="utf-8",
    )

    logger = toolkit.setup_logger("test", False)
    env = toolkit.load_env_file(env_path, logger)

    assert env["WORKOUTSUM_START"] == "01.01.2020"
    assert env["WORKOUTSUM_JSON"] == "true"
    assert env["WORKOUTSUM_OUT"] == "out.json"
    assert env["WORKOUTSUM_POST"] == "http://localhost/x"
    assert "NO_EQUAL_SIGN" not in env


def test_load_env_file_missing_returns_empty(tmp_path: Path) -> None:
    logger = toolkit.setup_logger("test", False)
    assert toolkit.load_env_file(tmp_path / "nope.env", logger) == {}


def test_get_env_prefers_env_file_over_os_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKOUTSUM_END", "31.12.2099")
    assert toolkit.get_env("WORKOUTSUM_END", {"WORKOUTSUM_END": "01.01.2020"}) == "01.01.2020"
    assert toolkit.get_env("WORKOUTSUM_END", {"WORKOUTSUM_END": ""}) == "31.12.2099"

    monkeypatch.delenv("WORKOUTSUM_END")
    assert toolkit.get_env("WORKOUTSUM_END", {}) is None


def test_setup_logger_keeps_single_handler() -> None:
    toolkit.setup_logger("test-handlers", False)
    logger = toolkit.setup_logger("test-handlers", True)
    assert len(logger.handlers) == 1
    assert logger.propagate is False
    assert logger.isEnabledFor(20)


def test_write_json_file(tmp_path: Path) -> None:
    logger = toolkit.setup_logger("test", False)
    out_path = tmp_path / "report.json"

    assert toolkit.write_json_file(out_path, {"total": 35}, logger) is True
    assert json.loads(out_path.read_text(encoding="utf-8")) == {"total": 35}

    assert toolkit.write_json_file(tmp_path / "no_dir" / "report.json", {"total": 1}, logger) is False


def test_post_json_sends_payload_and_reports_status() -> None:
    # テスト意図：POST の中身が JSON で、2xx なら True / 4xx 以上なら False
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        if request.url.path == "/fail":
            return httpx.Response(500, text="boom")
        return httpx.Response(201)

    transport = httpx.MockTransport(handler)
    logger = toolkit.setup_logger("test", False)

    assert toolkit.post_json("http://example.test/ok", {"total": 5}, 1.0, logger, transport=transport) is True
    assert toolkit.post_json("http://example.test/fail", {"total": 6}, 1.0, logger, transport=transport) is False
    assert seen == [{"total": 5}, {"total": 6}]


def test_post_json_returns_false_on_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    logger = toolkit.setup_logger("test", False)
    ok = toolkit.post_json(
        "http://example.test/", {"total": 1}, 1.0, logger, transport=httpx.MockTransport(handler)
    )
    assert ok is False
