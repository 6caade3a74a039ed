import itertools

from localmind.engine.phase import BUDGET_EXHAUSTED_MESSAGE, PhaseDetector, PhaseState
from localmind.engine.protocol import Phase, Thinking, ThinkingDone, Update


def _feed_all(detector: PhaseDetector, chunks: list[str]) -> list:
    events = []
    for chunk in chunks:
        events.extend(detector.feed(chunk))
    return events


def test_reasoning_then_answer_is_ordered_for_every_three_way_split() -> None:
    text = "<think>plan</think>answer"
    for i, j in itertools.combinations(range(1, len(text)), 2):
        chunks = [text[:i], text[i:j], text[j:]]
        detector = PhaseDetector()
        events = _feed_all(detector, chunks) + detector.finish()

        # Thinking deltas are optional (open and close may arrive together).
        structural = [e for e in events if not isinstance(e, Thinking)]
        assert structural[0] == Phase("thinking"), chunks
        assert structural[1] == ThinkingDone("plan"), chunks
        assert structural[2] == Phase("generating"), chunks
        assert all(isinstance(e, Update) for e in structural[3:]), chunks
        assert "".join(e.output for e in structural[3:]) == "answer", chunks

        thinking_positions = [k for k, e in enumerate(events) if isinstance(e, Thinking)]
        done_position = events.index(ThinkingDone("plan"))
        assert all(events.index(Phase("thinking")) < k < done_position for k in thinking_positions)
        assert detector.state is PhaseState.DONE


def test_thinking_deltas_stream_the_interior() -> None:
    detector = PhaseDetector()
    events = _feed_all(detector, ["<think>", "first ", "second", "</think>", "ok"])

    assert events == [
        Phase("thinking"),
        Thinking("first "),
        Thinking("second"),
        ThinkingDone("first second"),
        Phase("generating"),
        Update("ok"),
    ]


def test_escape_after_three_tokens_without_open_delimiter() -> None:
    detector = PhaseDetector()
    events = []
    for i, token in enumerate(["a", "b", "c", "d", "e"], start=1):
        produced = detector.feed(token)
        if i <= 3:
            assert produced == []
        events.extend(produced)

    assert events == [Phase("generating"), Update("abcd"), Update("e")]
    assert detector.state is PhaseState.GENERATING


def test_explicit_token_count_drives_the_escape() -> None:
    detector = PhaseDetector()
    assert detector.feed("Hello there", token_count=2) == []
    assert detector.feed(" friend", token_count=4) == [Phase("generating"), Update("Hello there friend")]


def test_budget_exhausted_inside_reasoning() -> None:
    detector = PhaseDetector()
    _feed_all(detector, ["<think>", "partial ", "reasoning"])

    assert detector.finish() == [
        ThinkingDone("partial reasoning"),
        Update(BUDGET_EXHAUSTED_MESSAGE),
    ]


def test_interrupt_inside_reasoning_has_no_budget_message() -> None:
    detector = PhaseDetector()
    _feed_all(detector, ["<think>", "still going"])

    assert detector.finish(interrupted=True) == [ThinkingDone("still going")]


def test_close_without_open_treats_rest_as_answer() -> None:
    detector = PhaseDetector()
    events = _feed_all(detector, ["reasoning from the prompt", "</think>\n\nAnswer", " here"])

    assert events == [Phase("generating"), Update("Answer"), Update(" here")]
    assert ThinkingDone not in {type(e) for e in events}


def test_short_answer_is_flushed_on_finish() -> None:
    detector = PhaseDetector()
    assert _feed_all(detector, ["Hi", "!"]) == []

    assert detector.finish() == [Phase("generating"), Update("Hi!")]


def test_empty_output_finishes_without_events() -> None:
    detector = PhaseDetector()
    assert detector.finish() == []


def test_feed_after_finish_is_ignored() -> None:
    detector = PhaseDetector()
    detector.finish()
    assert detector.feed("late") == []


def test_empty_deltas_count_as_tokens() -> None:
    detector = PhaseDetector()
    for _ in range(3):
        assert detector.feed("") == []
    assert detector.feed("x") == [Phase("generating"), Update("x")]


def test_escape_on_empty_output_emits_no_empty_update() -> None:
    detector = PhaseDetector()
    events = _feed_all(detector, ["", "", "", ""])

    assert events == [Phase("generating")]
    assert detector.state is PhaseState.GENERATING
    assert detector.feed("late") == [Update("late")]


def test_custom_delimiters() -> None:
    detector = PhaseDetector(open_delimiter="[R]", close_delimiter="[/R]")
    events = _feed_all(detector, ["[R]why[/R]because"])
    assert events == [Phase("thinking"), ThinkingDone("why"), Phase("generating"), Update("because")]
