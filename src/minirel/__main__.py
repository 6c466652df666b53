# 文件路径: MiniRel/src/minirel/__main__.py
"""
MiniRel 主启动文件
python -m minirel [--file script.json | --plan '{...}' | --demo]
"""

import sys

from minirel.cli.minirel_cli import main

if __name__ == "__main__":
    sys.exit(main())
