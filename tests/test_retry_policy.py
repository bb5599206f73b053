from __future__ import annotations

import pytest

from app.harvester import retry_policy
from app.harvester.error_codes import CorrelationTimeout, MissingUIElement, TransientUIError
from app.harvester.retry_policy import StepPolicy, retrying, run_step, with_retry


@pytest.fixture
def event_recorder(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, dict]]:
    events: list[tuple[str, dict]] = []

    def _record(label: str = "", **fields: object) -> None:
        events.append((label, fields))

    monkeypatch.setattr(retry_policy, "_sync_event", _record)
    return events


class _Flaky:
    def __init__(self, failures: int, exc: type[Exception] = TransientUIError) -> None:
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return "ok"


def test_with_retry_returns_first_success(event_recorder: list[tuple[str, dict]]) -> None:
    sleeps: list[float] = []
    step = _Flaky(failures=2)

    result = with_retry(step, max_attempts=3, delay_seconds=1.5, label="login", sleep=sleeps.append)

    assert result == "ok"
    assert step.calls == 3
    assert sleeps == [1.5, 1.5]
    assert [fields["attempt"] for _, fields in event_recorder] == [1, 2]
    assert all(fields["will_retry"] for _, fields in event_recorder)
    assert event_recorder[0][1]["error_code"] == "transient_ui"


def test_with_retry_reraises_last_error_unchanged(event_recorder: list[tuple[str, dict]]) -> None:
    step = _Flaky(failures=5)

    with pytest.raises(TransientUIError, match="failure 3"):
        with_retry(step, max_attempts=3, delay_seconds=0, sleep=lambda _s: None)

    assert step.calls == 3
    assert event_recorder[-1][1]["will_retry"] is False
    assert event_recorder[-1][1]["delay_seconds"] is None


def test_with_retry_does_not_retry_unlisted_errors(event_recorder: list[tuple[str, dict]]) -> None:
    step = _Flaky(failures=1, exc=MissingUIElement)

    with pytest.raises(MissingUIElement):
        with_retry(
            step,
            max_attempts=3,
            retry_on=(CorrelationTimeout,),
            sleep=lambda _s: None,
        )

    assert step.calls == 1
    assert event_recorder == []


def test_with_retry_treats_non_positive_attempts_as_one() -> None:
    step = _Flaky(failures=1)

    with pytest.raises(TransientUIError):
        with_retry(step, max_attempts=0, sleep=lambda _s: None)

    assert step.calls == 1


def test_retrying_decorator_uses_function_name(event_recorder: list[tuple[str, dict]]) -> None:
    step = _Flaky(failures=1)

    @retrying(max_attempts=2, delay_seconds=0, sleep=lambda _s: None)
    def load_page() -> str:
        return step()

    assert load_page() == "ok"
    assert event_recorder[0][1]["step"] == "load_page"


def test_run_step_degrades_after_correlation_timeouts(event_recorder: list[tuple[str, dict]]) -> None:
    step = _Flaky(failures=10, exc=CorrelationTimeout)

    outcome = run_step(
        step,
        policy=StepPolicy.DEGRADE,
        default=(),
        max_attempts=2,
        delay_seconds=0,
        label="contact:1",
        sleep=lambda _s: None,
    )

    assert outcome.degraded is True
    assert outcome.value == ()
    assert isinstance(outcome.error, CorrelationTimeout)
    assert step.calls == 2
    assert event_recorder[-1][0] == "degrade"
    assert event_recorder[-1][1]["step"] == "contact:1"


def test_run_step_required_propagates() -> None:
    step = _Flaky(failures=10, exc=CorrelationTimeout)

    with pytest.raises(CorrelationTimeout):
        run_step(
            step,
            policy=StepPolicy.REQUIRED,
            default=None,
            max_attempts=2,
            delay_seconds=0,
            sleep=lambda _s: None,
        )


def test_run_step_other_errors_propagate_even_when_degradable() -> None:
    step = _Flaky(failures=1, exc=MissingUIElement)

    with pytest.raises(MissingUIElement):
        run_step(step, policy=StepPolicy.DEGRADE, default=(), sleep=lambda _s: None)

    assert step.calls == 1


def test_run_step_success_is_not_degraded() -> None:
    outcome = run_step(lambda: ("note",), policy=StepPolicy.DEGRADE, default=())

    assert outcome.value == ("note",)
    assert outcome.degraded is False
    assert outcome.error is None
