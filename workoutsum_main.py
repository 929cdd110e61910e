"""
workoutsum のエントリーポイント（薄いラッパー）

- 実装本体（workoutsum.py）と CLI 実行の入口を分ける
- テストは workoutsum.py を直接 import して行う
"""

from __future__ import annotations

import sys

if __name__ == "__main__":
    from workoutsum import main

    raise SystemExit(main(sys.argv[1:]))
