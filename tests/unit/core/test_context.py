"""Tests for Context: cancellation, deadlines and log fields."""

import threading
import time

import pytest

from resilient_http.core.context import Context, background
from resilient_http.core.exceptions import CancelledError


def test_background_is_live():
    ctx = background()
    assert ctx.err() is None
    assert ctx.remaining() is None
    assert ctx.fields == {}
    ctx.raise_if_done()


def test_with_fields_merges_and_shares_signal():
    ctx, cancel = background().with_cancel()
    derived = ctx.with_fields(request_id="r1").with_fields(user="u")

    assert derived.fields == {"request_id": "r1", "user": "u"}
    assert ctx.fields == {}

    cancel()
    assert isinstance(derived.err(), CancelledError)


def test_fields_are_a_copy():
    ctx = background().with_fields(a=1)
    ctx.fields["a"] = 2
    assert ctx.fields == {"a": 1}


def test_cancel_propagates_to_children_only():
    parent, cancel_parent = background().with_cancel()
    child, cancel_child = parent.with_cancel()

    cancel_child()
    assert child.err() is not None
    assert parent.err() is None

    grandchild = parent.with_timeout(60)
    cancel_parent()
    assert grandchild.err().reason == "cancelled"


def test_child_of_cancelled_context_is_cancelled():
    parent, cancel = background().with_cancel()
    cancel()
    child, _ = parent.with_cancel()
    with pytest.raises(CancelledError):
        child.raise_if_done()


def test_deadline_exceeded():
    ctx = background().with_timeout(0.01)
    time.sleep(0.02)
    error = ctx.err()
    assert isinstance(error, CancelledError)
    assert error.reason == "deadline exceeded"


def test_with_timeout_keeps_earlier_deadline():
    outer = background().with_timeout(0.5)
    inner = outer.with_timeout(60)
    assert inner.deadline == outer.deadline


def test_bound_timeout():
    assert background().bound_timeout(5) == 5
    ctx = background().with_timeout(1)
    assert ctx.bound_timeout(5) <= 1


def test_sleep_interrupted_by_cancel():
    ctx, cancel = background().with_cancel()
    threading.Timer(0.05, cancel).start()

    start = time.monotonic()
    with pytest.raises(CancelledError) as exc_info:
        ctx.sleep(5)
    assert time.monotonic() - start < 2
    assert exc_info.value.reason == "cancelled"


def test_sleep_stops_at_deadline():
    ctx = background().with_timeout(0.05)
    start = time.monotonic()
    with pytest.raises(CancelledError, match="deadline exceeded"):
        ctx.sleep(5)
    assert time.monotonic() - start < 2


def test_on_cancel_callback_and_unregister():
    ctx, cancel = background().with_cancel()
    called = []
    ctx.on_cancel(lambda: called.append("a"))
    unregister = ctx.on_cancel(lambda: called.append("b"))
    unregister()

    cancel()
    cancel()
    assert called == ["a"]


def test_on_cancel_runs_immediately_when_already_cancelled():
    ctx, cancel = background().with_cancel()
    cancel()
    called = []
    ctx.on_cancel(lambda: called.append(True))
    assert called == [True]


def test_context_constructor_fields():
    ctx = Context(fields={"k": "v"})
    assert ctx.fields == {"k": "v"}


def test_cancellable():
    root = background()
    assert not root.cancellable
    assert not root.with_fields(job="sync").cancellable

    child, _ = root.with_cancel()
    assert child.cancellable
    assert child.with_fields(job="sync").cancellable
    assert root.with_timeout(5).cancellable
