"""
Sentry helpers without a configured DSN.
"""
from dripline.sentry_config import capture_exception


def test_capture_exception_is_a_noop_without_sentry():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        capture_exception()
