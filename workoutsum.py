"""
workoutsum（トレーニング記録の合計ツール）

このツールがやること：
- markdown っぽい書式のトレーニング記録ファイルを（複数でも）順に読む
- `# dd.MM.yyyy` の行で「今日の日付」を切り替える
- `* 10 pushups` の行の先頭の数字を、その日付の記録として集める
- 開始日 / 終了日（どちらも省略可、両端を含む）で絞り込んで、合計を出す

流れ：
  CLI/env/config（入口） → 行の分類 → 日付ごとに集める → 期間で絞る → 合計 → 出力（stdout/file/http）

設定の優先順位：
  CLI > env（OS環境変数 / --env-file） > config（JSON）
"""

from __future__ import annotations

import argparse
import contextlib
import functools
import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence, TypeAlias

import toolkit

LOGGER_NAME = "workoutsum"

DATE_FORMAT_HINT = "dd.MM.yyyy"

NO_PATHS_MESSAGE = "You need to provide path/s to workout file/s"

BANNER = (
    "This program can be used to summarize amount in workout files written in markdown format\n"
    "The information in the workout file must adhere to some simple rules:\n"
    "Workout days must be defined by lines with format # dd.MM.yyyy\n"
    "Lines where workout amounts is mentioned must start with asterix (*)\n"
    "Start date parameter (optional) must have format dd.MM.yyyy\n"
    "End date parameter (optional) must have format dd.MM.yyyy"
)


# -------------------------
# CLIパース（I/O境界：入力）
# -------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    CLI引数を定義して、解析結果（args）を返す。

    ここでは workoutsum が受け取る項目を並べるだけ。
    env/config の補完は resolve_effective_args でやる。
    -h / --help は argparse がバナーを出して終了コード0で抜ける。
    """
    parser = argparse.ArgumentParser(
        prog="workoutsum",
        description=BANNER,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "paths",
        nargs="*",
        type=Path,
        help="トレーニング記録ファイル（複数可、指定した順に読む）",
    )

    # default=None のままにして「CLIで渡されたか」を後から判別できるようにする
    parser.add_argument("-s", "--start", default=None, help="Start date (including) of summary in format dd.MM.yyyy")
    parser.add_argument("-e", "--end", default=None, help="End date (including) of summary in format dd.MM.yyyy")

    parser.add_argument("--json", action="store_true", help="集計結果をJSON形式で出力する")
    parser.add_argument("--verbose", action="store_true", help="処理中の詳細ログをstderrに出す")

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON config file path (e.g., config.json). CLI args override config.",
    )
    parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Write the JSON payload to a file (e.g., report.json).",
    )
    parser.add_argument(
        "--post",
        type=str,
        default="",
        help="集計結果のJSONをPOSTするURL（指定しない場合はPOSTしない）",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="HTTP POSTのタイムアウト秒数（デフォルト: 10.0秒）",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from a .env file before processing (e.g., .env).",
    )

    # 位置引数（paths）がオプションの後ろにあっても拾えるように intermixed で解析する
    return parser.parse_intermixed_args(argv)


# -------------------------
# 設定ファイル（JSON）（I/O境界：入力）
# -------------------------


def load_config(path: Path, logger: logging.Logger) -> dict[str, Any]:
    """
    JSON設定ファイルを読み込む。読めなければ空の dict（= 何も補完しない）。

    期待する例：
      {"paths": ["2020.md", "2021.md"], "start": "01.01.2021", "json": true}
    """
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
    except (OSError, ValueError) as exc:
        logger.error("config load failed: %s (%s)", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.error("config must be a JSON object: %s", path)
        return {}
    return data


def _as_paths(value: Any) -> list[Path]:
    if isinstance(value, (list, tuple)):
        return [Path(str(v)) for v in value if str(v)]
    return [Path(str(value))] if str(value) else []


def _as_timeout(value: Any, logger: logging.Logger) -> float | None:
    """数値にできなければ None（validate_args で終了コード2にする）。"""
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.error("timeout must be a number: %r", value)
        return None


def apply_config(args: argparse.Namespace, cfg: dict[str, Any], provided: set[str], logger: logging.Logger) -> None:
    """
    config の値を args に反映する（CLI指定が優先）。

    provided に入っているオプションは上書きしない。
    paths（位置引数）は CLI で1つも渡されなかったときだけ使う。
    """

    def has(name: str) -> bool:
        # JSON の null は「書いていない」のと同じ扱い
        return cfg.get(name) is not None

    if not args.paths and has("paths"):
        args.paths = _as_paths(cfg["paths"])

    if "--start" not in provided and has("start"):
        args.start = str(cfg["start"])
    if "--end" not in provided and has("end"):
        args.end = str(cfg["end"])
    if "--timeout" not in provided and has("timeout"):
        args.timeout = _as_timeout(cfg["timeout"], logger)
    if "--post" not in provided and has("post"):
        args.post = str(cfg["post"])
    if "--out" not in provided and has("out"):
        args.out = Path(str(cfg["out"]))

    if "--json" not in provided and has("json"):
        args.json = bool(cfg["json"])
    if "--verbose" not in provided and has("verbose"):
        args.verbose = bool(cfg["verbose"])

    logger.info("config applied (CLI overrides config)")


# -------------------------
# env適用（I/O境界：入力）
# -------------------------


def apply_env(
    args: argparse.Namespace,
    env_file: dict[str, str],
    provided: set[str],
    logger: logging.Logger,
    paths_from_cli: bool,
) -> None:
    """
    env の値を args に反映する（CLI指定が優先、config よりは強い）。

    対応する環境変数：
      WORKOUTSUM_PATHS（os.pathsep 区切り）, WORKOUTSUM_START, WORKOUTSUM_END,
      WORKOUTSUM_JSON, WORKOUTSUM_VERBOSE, WORKOUTSUM_POST, WORKOUTSUM_TIMEOUT,
      WORKOUTSUM_OUT, WORKOUTSUM_CONFIG
    """
    if "--config" not in provided and args.config is None:
        v = toolkit.get_env("WORKOUTSUM_CONFIG", env_file)
        if v:
            args.config = Path(v)

    if not paths_from_cli:
        v = toolkit.get_env("WORKOUTSUM_PATHS", env_file)
        if v:
            args.paths = [Path(p) for p in v.split(os.pathsep) if p]

    if "--start" not in provided:
        v = toolkit.get_env("WORKOUTSUM_START", env_file)
        if v:
            args.start = v
    if "--end" not in provided:
        v = toolkit.get_env("WORKOUTSUM_END", env_file)
        if v:
            args.end = v
    if "--timeout" not in provided:
        v = toolkit.get_env("WORKOUTSUM_TIMEOUT", env_file)
        if v:
            args.timeout = _as_timeout(v, logger)
    if "--post" not in provided:
        v = toolkit.get_env("WORKOUTSUM_POST", env_file)
        if v:
            args.post = v
    if "--out" not in provided:
        v = toolkit.get_env("WORKOUTSUM_OUT", env_file)
        if v:
            args.out = Path(v)

    if "--json" not in provided:
        v = toolkit.get_env("WORKOUTSUM_JSON", env_file)
        if v is not None:
            args.json = toolkit.parse_bool(v)
    if "--verbose" not in provided:
        v = toolkit.get_env("WORKOUTSUM_VERBOSE", env_file)
        if v is not None:
            args.verbose = toolkit.parse_bool(v)

    logger.info("env applied (CLI overrides env)")


# -------------------------
# データモデル（DTO）
# -------------------------


@dataclass(frozen=True, order=True)
class CalendarDate:
    """
    (year, month, day) の3つ組。比較は year → month → day の順。

    datetime.date にしないのは、99.99.9999 のような「形だけ合っている日付」も
    そのまま受け入れるため（暦としての妥当性は見ない）。
    """

    year: int
    month: int
    day: int

    def __str__(self) -> str:
        return f"{self.day:02d}.{self.month:02d}.{self.year:04d}"


@dataclass(frozen=True)
class DateMarker:
    """`# dd.MM.yyyy` の行。"""

    date: CalendarDate


@dataclass(frozen=True)
class AmountEntry:
    """`* 10 pushups` の行。amount は先頭の数字だけ。"""

    amount: int


WorkoutLog: TypeAlias = dict[CalendarDate, tuple[int, ...]]


@dataclass(frozen=True)
class DateRange:
    """
    絞り込みの期間。start / end はどちらも省略可で、指定したほうは「その日を含む」。
    """

    start: CalendarDate | None = None
    end: CalendarDate | None = None

    def predicate(self) -> Callable[[CalendarDate], bool]:
        """
        指定されている境界だけをチェックする関数を返す（0〜2個の AND）。
        境界が無ければ常に True。
        """
        checks: list[Callable[[CalendarDate], bool]] = []
        if self.start is not None:
            start = self.start
            checks.append(lambda d: d >= start)
        if self.end is not None:
            end = self.end
            checks.append(lambda d: d <= end)
        return lambda d: all(check(d) for check in checks)


@dataclass(frozen=True)
class DayTotal:
    date: CalendarDate
    amounts: tuple[int, ...]
    total: int


@dataclass(frozen=True)
class WorkoutReport:
    """
    集計結果のDTO。

    - total: 期間内の全 amount の合計
    - days: 期間内の日ごとの内訳（日付順）
    """

    paths: list[str]
    date_range: DateRange
    total: int
    days: list[DayTotal]


# -------------------------
# エラー
# -------------------------


class WorkoutError(Exception):
    """workoutsum の実行を止めるエラーの基底クラス。"""


class UsageError(WorkoutError):
    """入力ファイルが1つも無いなど、呼び出し方の問題。"""


class DateFormatError(WorkoutError, ValueError):
    """--start / --end の日付文字列が dd.MM.yyyy に合わない。"""

    def __init__(self, text: str) -> None:
        super().__init__(
            f"bad date format encountered, be sure to supply date in format: {DATE_FORMAT_HINT} (got {text!r})"
        )
        self.text = text


# -------------------------
# 行の分類（コアロジック）
# -------------------------

# `#` + 空白(任意) + dd.MM.yyyy + 空白(任意)。後ろに他の文字は置けない。
_DATE_LINE_RE = re.compile(r"#\s*([0-9]{2})\.([0-9]{2})\.([0-9]{4})\s*", re.ASCII)

# `*` + 空白(任意) + 数字 + 空白/英数字/_ の説明文(任意)。
_AMOUNT_LINE_RE = re.compile(r"\*\s*([0-9]+)[\s\w]*", re.ASCII)

# CLI から渡される日付。前後に何も付けられない。
_DATE_BOUND_RE = re.compile(r"([0-9]{2})\.([0-9]{2})\.([0-9]{4})", re.ASCII)


def _date_from_match(m: re.Match[str]) -> CalendarDate:
    # 書かれている順は day.month.year
    day, month, year = (int(g) for g in m.groups())
    return CalendarDate(year=year, month=month, day=day)


def classify_line(line: str) -> DateMarker | AmountEntry | None:
    """
    1行を DateMarker / AmountEntry / None（無視する行）に分類する。

    - 行全体がパターンに合うときだけ拾う（部分一致はしない）
    - 合わない行は例外にせず None（空行・壊れた行・ただのメモ）
    - amount は先頭の数字の並びだけ。後ろに数字があっても説明文扱い
    """
    s = line.rstrip("\r\n")

    m = _DATE_LINE_RE.fullmatch(s)
    if m:
        return DateMarker(date=_date_from_match(m))

    m = _AMOUNT_LINE_RE.fullmatch(s)
    if m:
        return AmountEntry(amount=int(m.group(1)))

    return None


def parse_date_bound(text: str) -> CalendarDate:
    """
    CLI の --start / --end を CalendarDate にする。

    classify_line と違って、合わなければ DateFormatError で止める
    （ユーザーが指定した値が読めないのは「データのノイズ」ではなく使い方の誤り）。
    """
    m = _DATE_BOUND_RE.fullmatch(text)
    if not m:
        raise DateFormatError(text)
    return _date_from_match(m)


# -------------------------
# 日付ごとに集める（コアロジック）
# -------------------------


@dataclass
class _Fold:
    current: CalendarDate | None = None
    entries: dict[CalendarDate, list[int]] = field(default_factory=dict)


def aggregate_lines(lines: Iterable[str], logger: logging.Logger) -> WorkoutLog:
    """
    行の並びを WorkoutLog（日付 → amount のタプル）にまとめる。

    - DateMarker で「今の日付」を切り替える。同じ日付が再び出たら、前の記録の後ろに足す
    - AmountEntry は今の日付に追加（順番はそのまま）
    - 日付がまだ無いうちの AmountEntry は捨てる
    - ファイルは読まないので、テストでは list[str] をそのまま渡せる
    """

    def step(state: _Fold, line: str) -> _Fold:
        kind = classify_line(line)
        if isinstance(kind, DateMarker):
            state.current = kind.date
        elif isinstance(kind, AmountEntry):
            if state.current is None:
                logger.info("[skip] amount before any date line: %s", line.strip()[:200])
            else:
                state.entries.setdefault(state.current, []).append(kind.amount)
        return state

    final = functools.reduce(step, lines, _Fold())
    return {date: tuple(amounts) for date, amounts in final.entries.items()}


def iter_file_lines(paths: Iterable[str | Path], logger: logging.Logger) -> Iterator[str]:
    """
    複数ファイルを「1本の行の並び」としてつないで返す（引数の順 → 行の順）。

    ファイルは1つずつ with で開くので、読み終わり・途中の例外・close() の
    どれでも閉じられる。
    """
    for path in paths:
        p = Path(path).expanduser()
        logger.info("open: %s", p)
        with p.open("r", encoding="utf-8", errors="replace") as f:
            yield from f


def read_workout_log(paths: Iterable[str | Path], logger: logging.Logger) -> WorkoutLog:
    """ファイル群を読んで WorkoutLog を作る。途中で失敗しても開いていたファイルは閉じる。"""
    with contextlib.closing(iter_file_lines(paths, logger)) as lines:
        return aggregate_lines(lines, logger)


# -------------------------
# 期間で絞る / 合計（コアロジック）
# -------------------------


@dataclass(frozen=True)
class RangeView:
    """
    WorkoutLog のうち、期間に入る (date, amounts) だけを見せるビュー。

    iter するたびに元の log を先頭から読み直すので、何度でも回せる。
    並び順は log（dict）の順のまま。
    """

    log: Mapping[CalendarDate, tuple[int, ...]]
    date_range: DateRange

    def __iter__(self) -> Iterator[tuple[CalendarDate, tuple[int, ...]]]:
        keep = self.date_range.predicate()
        return ((date, amounts) for date, amounts in self.log.items() if keep(date))


def select_range(log: Mapping[CalendarDate, tuple[int, ...]], date_range: DateRange) -> RangeView:
    return RangeView(log=log, date_range=date_range)


def sum_amounts(entries: Iterable[tuple[CalendarDate, Sequence[int]]]) -> int:
    """全日付の amount を合計する。空なら 0。"""
    return sum(sum(amounts) for _, amounts in entries)


# -------------------------
# 組み立て（パイプライン）
# -------------------------


def build_report(
    paths: Sequence[str | Path],
    start: str | None,
    end: str | None,
    logger: logging.Logger,
) -> WorkoutReport:
    """
    日付の解釈 → 読み込み → 絞り込み → 合計 を順に行う。

    どこかで失敗したら例外がそのまま上がる（途中の結果は返さない）：
    - paths が空: UsageError
    - 日付が読めない: DateFormatError（ファイルを開く前に判定する）
    - ファイルが開けない: OSError
    """
    if not paths:
        raise UsageError(NO_PATHS_MESSAGE)

    date_range = DateRange(
        start=parse_date_bound(start) if start is not None else None,
        end=parse_date_bound(end) if end is not None else None,
    )
    logger.info("read start: files=%d start=%s end=%s", len(paths), date_range.start, date_range.end)

    log = read_workout_log(paths, logger)
    view = select_range(log, date_range)

    days = [
        DayTotal(date=date, amounts=amounts, total=sum(amounts))
        for date, amounts in sorted(view, key=lambda t: t[0])
    ]
    total = sum_amounts(view)

    logger.info("read done: days=%d/%d total=%d", len(days), len(log), total)
    return WorkoutReport(paths=[str(p) for p in paths], date_range=date_range, total=total, days=days)


def summarize_workouts(
    paths: Sequence[str | Path],
    start: str | None,
    end: str | None,
    logger: logging.Logger,
) -> int:
    """build_report の合計だけを返す。"""
    return build_report(paths, start=start, end=end, logger=logger).total


# -------------------------
# 出力（I/O境界：stdout / ファイル / HTTP）
# -------------------------


def build_json_payload(report: WorkoutReport) -> dict[str, Any]:
    """
    JSON用の辞書を組み立てる。キー名は workoutsum の出力の形。

    日付は入力と同じ dd.MM.yyyy で出す。
    """
    start = report.date_range.start
    end = report.date_range.end
    return {
        "paths": report.paths,
        "start": str(start) if start is not None else None,
        "end": str(end) if end is not None else None,
        "total": report.total,
        "days": [{"date": str(d.date), "amounts": list(d.amounts), "total": d.total} for d in report.days],
    }


# -------------------------
# 実行フロー組み立て（入口を薄くする）
# -------------------------


def resolve_effective_args(argv: list[str] | None) -> tuple[argparse.Namespace, logging.Logger]:
    """
    CLI/env/config を統合して「最終的に使う args」を確定する。
    """
    args = parse_args(argv)

    # 位置引数は後から「CLIで渡されたか」を判別できないので先に確保
    paths_from_cli = bool(args.paths)

    provided = toolkit.parse_provided_options(argv)
    # -s / -e の短い形は parse_provided_options では拾えないので、値の有無で判定する
    if args.start is not None:
        provided.add("--start")
    if args.end is not None:
        provided.add("--end")

    logger = toolkit.setup_logger(LOGGER_NAME, args.verbose)

    env_file: dict[str, str] = {}
    if args.env_file is not None:
        env_file = toolkit.load_env_file(args.env_file, logger)

    # config は最下位なので、env から config パスだけ先に解決しておく
    if args.config is None and "--config" not in provided:
        v = toolkit.get_env("WORKOUTSUM_CONFIG", env_file)
        if v:
            args.config = Path(v)

    if args.config is not None:
        cfg = load_config(args.config, logger)
        apply_config(args, cfg, provided, logger)

    apply_env(args, env_file, provided, logger, paths_from_cli)

    # verbose が env/config で変わりうるので logger を組み直す
    logger = toolkit.setup_logger(LOGGER_NAME, args.verbose)
    return args, logger


def validate_args(args: argparse.Namespace) -> int:
    """
    オプション値の検証。失敗したら終了コード（2）を返す。

    入力ファイルの存在はここでは見ない（開けなければパイプラインの失敗として扱う）。
    """
    if args.timeout is None:
        print("Error: --timeout の値が数値ではありません", file=sys.stderr)
        return 2
    if args.timeout <= 0:
        print(f"Error: --timeout の値は0より大きい必要があります: {args.timeout}", file=sys.stderr)
        return 2
    return 0


def main(argv: list[str] | None = None) -> int:
    """
    実行入口（テストからも呼べる形）。

    終了コード：
    - 0: 成功 / 入力ファイルの指定なし（案内を出すだけ）
    - 1: 集計の失敗（日付の形式、ファイルが読めない等）、--out / --post の失敗
    - 2: オプション値が不正
    """
    args, logger = resolve_effective_args(argv)

    rc = validate_args(args)
    if rc != 0:
        return rc

    if not args.paths:
        print(NO_PATHS_MESSAGE)
        return 0

    try:
        report = build_report(args.paths, start=args.start, end=args.end, logger=logger)
    except (WorkoutError, OSError) as exc:
        print(f"Exception encountered - {exc}")
        return 1

    payload: dict[str, Any] | None = None
    if args.json or args.post or args.out is not None:
        payload = build_json_payload(report)

    # --json: stdoutはJSON専用
    if args.json and payload is not None:
        print(json.dumps(payload, ensure_ascii=False, indent=2))

    if args.out is not None and payload is not None:
        ok = toolkit.write_json_file(args.out, payload, logger)
        if not ok:
            return 1

    if args.post and payload is not None:
        ok = toolkit.post_json(args.post, payload, timeout=args.timeout, logger=logger)
        if not ok:
            return 1

    if args.json:
        return 0

    print(f"Your workout summary is: {report.total}")
    return 0
