# tbdetect/tools/__init__.py
"""
TB Detect — tools package

Only the `backends` subpackage lives here; import from it directly:

    from tbdetect.tools.backends import build_backend
"""
