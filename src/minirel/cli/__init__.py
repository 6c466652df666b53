# 文件路径: MiniRel/src/minirel/cli/__init__.py
