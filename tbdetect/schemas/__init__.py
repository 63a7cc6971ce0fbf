# tbdetect/schemas/__init__.py
