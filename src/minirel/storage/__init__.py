# 文件路径: MiniRel/src/minirel/storage/__init__.py
