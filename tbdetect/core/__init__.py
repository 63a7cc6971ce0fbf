# tbdetect/core/__init__.py
