from privacy_shield.hysteresis import ShieldStateMachine, Transition


def run(machine, signals, stranger_threshold=3, safe_threshold=8):
    return [machine.update(signal, stranger_threshold, safe_threshold) for signal in signals]


def test_shield_turns_on_exactly_at_stranger_threshold():
    machine = ShieldStateMachine()

    first, second, third = run(machine, [True, True, True])

    assert first == Transition()
    assert second == Transition()
    assert third.show_shield is True
    assert third.icon_safe is False
    assert third.notify_stranger is True
    assert machine.state.is_shield_active is True


def test_safe_frame_interrupts_stranger_run():
    machine = ShieldStateMachine()

    transitions = run(machine, [True, True, False, True, True])

    assert not any(t.show_shield for t in transitions)
    assert machine.state.consecutive_stranger_frames == 2
    assert machine.state.is_shield_active is False


def test_safe_signal_while_safe_reports_safe_icon():
    machine = ShieldStateMachine()

    transition = machine.update(False, 3, 8)

    assert transition == Transition(icon_safe=True)


def test_shield_turns_off_exactly_at_safe_threshold():
    machine = ShieldStateMachine()
    run(machine, [True] * 3)

    transitions = run(machine, [False] * 8)

    assert not any(t.hide_shield for t in transitions[:7])
    assert transitions[7].hide_shield is True
    assert transitions[7].icon_safe is True
    assert machine.state.is_shield_active is False
    assert machine.state.consecutive_safe_frames == 0


def test_stranger_frame_restarts_safe_count():
    machine = ShieldStateMachine()
    run(machine, [True] * 3)

    run(machine, [False] * 7 + [True] + [False] * 7)

    assert machine.state.is_shield_active is True
    assert machine.state.consecutive_safe_frames == 7

    last = machine.update(False, 3, 8)
    assert last.hide_shield is True


def test_stranger_notification_fires_once_per_shielded_run():
    machine = ShieldStateMachine()

    first_run = run(machine, [True] * 10)
    assert sum(t.notify_stranger for t in first_run) == 1

    run(machine, [False] * 8)
    second_run = run(machine, [True] * 3)
    assert second_run[-1].notify_stranger is True


def test_force_aligns_mode_and_clears_counters():
    machine = ShieldStateMachine()
    run(machine, [True, True])

    machine.force(True)

    assert machine.state.is_shield_active is True
    assert machine.state.consecutive_stranger_frames == 0

    machine.force(False)
    assert machine.state.is_shield_active is False
    assert machine.state.has_notified_stranger is False
