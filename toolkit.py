"""
workoutsum で使う「I/Oまわり」の共通部品（toolkit）

ここに置くもの：
- logger の構成（stderr へ出す）
- .env の読み取り / 環境変数の取得 / bool 変換
- どの --option が CLI で明示されたかの判定
- JSON の保存と HTTP POST（httpx）

ツール固有の引数名・env名・payload構造は workoutsum.py 側で持つ。
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import httpx


def parse_provided_options(argv: list[str] | None) -> set[str]:
    """
    CLI で明示されたオプション名の集合を返す。

    config/env は「ここに入っていない項目」だけを埋める。
    `--` 以降は位置引数なので見ない。
    """
    if argv is None:
        return set()
    provided: set[str] = set()
    for token in argv:
        if token == "--":
            break
        if token.startswith("--"):
            provided.add(token.split("=", 1)[0])
    return provided


def parse_bool(value: str) -> bool:
    """
    env 用の bool パース。

    true: 1, true, yes, y, on
    false: 0, false, no, n, off
    """
    v = value.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return bool(v)


def load_env_file(path: Path, logger: logging.Logger) -> dict[str, str]:
    """
    .env 形式（KEY=VALUE）を読む。

    - 空行 / コメント(#...) は無視
    - `export KEY=VALUE` を許容
    - 値の前後のクォート（' "）は剥がす
    - `=` を含まない行は無視（壊れた行で落とさない）
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.error("env file load failed: %s (%s)", path, exc)
        return {}

    env: dict[str, str] = {}
    for row in text.splitlines():
        line = row.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip()
        if len(val) >= 2 and val[0] == val[-1] and val[0] in {'"', "'"}:
            val = val[1:-1]
        if key:
            env[key] = val
    return env


def get_env(name: str, env_file: dict[str, str]) -> str | None:
    """
    環境変数を取得する。空文字は「未設定」扱い。

    優先順位: env_file（--env-file） > OS環境変数
    """
    v = env_file.get(name)
    if v:
        return v
    v = os.getenv(name)
    if v:
        return v
    return None


def setup_logger(name: str, verbose: bool) -> logging.Logger:
    """
    stderr に出す logger を構成する。

    stdout は結果（サマリ行 / JSON）専用にしたいので、進捗や警告は stderr へ。
    何度呼んでも handler は1つだけになる。
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    logger.propagate = False

    logger.handlers.clear()

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(handler)
    return logger


def write_json_file(path: Path, payload: dict[str, Any], logger: logging.Logger) -> bool:
    """
    payload を JSON ファイルに保存する。失敗したら logger.error を出して False。
    """
    try:
        out_path = path.expanduser().resolve()
        out_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        logger.info("payload written to %s", out_path)
        return True
    except OSError as exc:
        logger.error("failed to write payload to %s: %s", path, exc)
        return False


def post_json(
    url: str,
    payload: dict[str, Any],
    timeout: float,
    logger: logging.Logger,
    transport: httpx.BaseTransport | None = None,
) -> bool:
    """
    payload を JSON として POST する。

    - 成否は stderr のログで報告する（stdout は汚さない）
    - 4xx/5xx と通信エラーは False
    - transport はテストで httpx.MockTransport を差し込むためのもの
    """
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            resp = client.post(url, json=payload)
        logger.info("POST %s -> %d", url, resp.status_code)
        if resp.status_code >= 400:
            logger.warning("response body (truncated): %s", resp.text[:200])
            return False
        return True
    except httpx.HTTPError as exc:
        logger.error("HTTP POST failed: %s", exc)
        return False
