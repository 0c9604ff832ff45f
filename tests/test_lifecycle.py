from couchlurker.lifecycle import HostLifecycle


def test_teardown_runs_callbacks_once_in_order():
    calls = []
    lc = HostLifecycle()
    lc.on_teardown(lambda: calls.append("a"))
    lc.on_teardown(lambda: calls.append("b"))
    lc.teardown()
    lc.teardown()
    assert calls == ["a", "b"]
    assert lc.torn_down


def test_unregistered_callback_does_not_run():
    calls = []
    lc = HostLifecycle()
    unregister = lc.on_teardown(lambda: calls.append("x"))
    unregister()
    unregister()
    lc.teardown()
    assert calls == []


def test_late_registration_runs_immediately():
    calls = []
    lc = HostLifecycle()
    lc.teardown()
    lc.on_teardown(lambda: calls.append("late"))
    assert calls == ["late"]


def test_failing_callback_does_not_block_others():
    calls = []
    lc = HostLifecycle()

    def boom():
        raise RuntimeError("release failed")

    lc.on_teardown(boom)
    lc.on_teardown(lambda: calls.append("next"))
    lc.teardown()
    assert calls == ["next"]
