import time

from timeout_utils import call_with_timeout, is_network_available


def test_returns_result_within_deadline():
    assert call_with_timeout(lambda: 42, timeout=1.0) == 42


def test_returns_fallback_on_timeout():
    started = time.monotonic()
    assert call_with_timeout(lambda: time.sleep(2) or "late", timeout=0.1, fallback="fallback") == "fallback"
    assert time.monotonic() - started < 1.0


def test_returns_fallback_on_exception():
    def boom():
        raise RuntimeError("boom")

    assert call_with_timeout(boom, timeout=1.0, fallback=False) is False


def test_network_check_rejects_url_without_host():
    assert not is_network_available("not a url")
