import pytest

from stockbot.pipeline import Pipeline, PipelineStep, Turn


@pytest.mark.asyncio
async def test_stopped_turn_runs_only_always_run_steps(events):
    calls = []

    def record(name, stop=False):
        async def step(turn):
            calls.append(name)
            if stop:
                turn.stop("halt")
        return step

    pipeline = Pipeline(
        [
            PipelineStep("first", record("first", stop=True)),
            PipelineStep("skipped", record("skipped")),
            PipelineStep("finally", record("finally"), always_run=True),
        ]
    )
    turn = Turn(event=events.text("db"))
    await pipeline.run(turn)
    assert calls == ["first", "finally"]
    assert turn.trace == ["first", "stop:halt"]


@pytest.mark.asyncio
async def test_skip_if(events):
    calls = []

    async def step(turn):
        calls.append("ran")

    pipeline = Pipeline([PipelineStep("maybe", step, skip_if=lambda turn: True)])
    await pipeline.run(Turn(event=events.text("db")))
    assert calls == []
