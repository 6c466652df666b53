# 文件路径: MiniRel/src/minirel/engine/__init__.py
