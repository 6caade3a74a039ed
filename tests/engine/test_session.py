import threading

from localmind.engine.phase import BUDGET_EXHAUSTED_MESSAGE
from localmind.engine.protocol import Complete, Error, Phase, Start, Thinking, ThinkingDone, Update
from localmind.engine.session import GenerationSession
from localmind.engine.stopping import StoppingController
from localmind.engine.subscribers import SubscriberSet


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_stopping_reset_clears_stale_interrupt() -> None:
    controller = StoppingController()
    controller.interrupt()
    assert controller.should_stop()

    controller.reset()
    assert not controller.should_stop()

    # A new session needs its own interrupt.
    controller.interrupt()
    assert controller.should_stop()


def test_stopping_interrupt_from_another_thread() -> None:
    controller = StoppingController()
    t = threading.Thread(target=controller.interrupt)
    t.start()
    t.join()
    assert controller.should_stop()


def test_session_event_sequence_with_stats() -> None:
    events = []
    clock = _FakeClock()
    session = GenerationSession(events.append, clock=clock)

    session.start(5)
    for chunk in ["<think>", "hmm", "</think>", "Yes", "."]:
        session.on_text(chunk)
        clock.now += 0.5
    session.finish()

    assert events[0] == Start(input_tokens=5)
    assert [type(e) for e in events[1:]] == [Phase, Thinking, ThinkingDone, Phase, Update, Update, Complete]
    updates = [e for e in events if isinstance(e, Update)]
    assert [u.output for u in updates] == ["Yes", "."]
    assert [u.token_count for u in updates] == [4, 5]
    assert updates[-1].tokens_per_second == 5 / 2.0
    assert events[-1] == Complete(tokens_per_second=2.5, token_count=5, input_tokens=5)


def test_session_single_terminal_event() -> None:
    events = []
    session = GenerationSession(events.append)
    session.on_text("a")
    session.fail("boom")
    session.finish()
    session.fail("again")
    session.on_text("late")

    assert events[0] == Start(input_tokens=0)
    assert events[-1] == Error("boom")
    assert sum(isinstance(e, (Complete, Error)) for e in events) == 1
    assert session.closed


def test_session_authoritative_stats_override_local_ones() -> None:
    events = []
    session = GenerationSession(events.append)
    for token in ["one", " two", " three", " four"]:
        session.on_text(token)
    session.finish(token_count=40, tokens_per_second=12.3, input_tokens=9)

    assert events[-1] == Complete(tokens_per_second=12.3, token_count=40, input_tokens=9)


def test_session_budget_exhaustion_before_complete() -> None:
    events = []
    session = GenerationSession(events.append)
    session.on_text("<think>")
    session.on_text("never closes")
    session.finish()

    assert events[-3] == ThinkingDone("never closes")
    assert isinstance(events[-2], Update) and events[-2].output == BUDGET_EXHAUSTED_MESSAGE
    assert isinstance(events[-1], Complete)


def test_session_start_is_emitted_once() -> None:
    events = []
    session = GenerationSession(events.append, input_tokens=3)
    session.start()
    session.start(10)
    session.on_text("x")
    assert [e for e in events if isinstance(e, Start)] == [Start(input_tokens=3)]


def test_subscriber_removed_during_dispatch_does_not_skip_others() -> None:
    subscribers: SubscriberSet = SubscriberSet()
    calls = []

    def first(event) -> None:
        calls.append("first")
        subscribers.discard(first)

    def second(event) -> None:
        calls.append("second")

    subscribers.add(first)
    subscribers.add(second)
    subscribers.add(second)

    for listener in subscribers.snapshot():
        listener("event")
    for listener in subscribers.snapshot():
        listener("event")

    assert calls == ["first", "second", "second"]
    assert len(subscribers) == 1
    assert second in subscribers
