from kungfu import Error, Ok, Result

from tracklease.errors import ErrorKind, LeaseError
from tracklease.orders import Compensations

BOOM = LeaseError(ErrorKind.GATEWAY_ORDER, "boom")


async def ok[T](value: T) -> Result[T, LeaseError]:
    return Ok(value)


async def fail() -> Result[str, LeaseError]:
    return Error(BOOM)


class TestCompensations:
    async def test_rollback_runs_in_reverse(self):
        undone: list[str] = []
        saga = Compensations()

        async def undo(name: str) -> Result[None, LeaseError]:
            undone.append(name)
            return Ok(None)

        await saga.step("first", ok("a"), compensate=lambda v: undo(f"first:{v}"))
        await saga.step("second", ok("b"), compensate=lambda v: undo(f"second:{v}"))
        failed = await saga.step("third", fail(), compensate=lambda v: undo("third"))

        report = await saga.rollback()

        assert isinstance(failed, Error)
        assert undone == ["second:b", "first:a"]
        assert report.run == 2
        assert report.complete

    async def test_steps_without_compensator_are_skipped(self):
        saga = Compensations()
        await saga.step("read_only", ok(1))

        report = await saga.rollback()

        assert report.run == 0
        assert report.complete

    async def test_failing_compensators_do_not_stop_the_rest(self):
        undone: list[str] = []
        saga = Compensations()

        async def undo_ok() -> Result[None, LeaseError]:
            undone.append("ok")
            return Ok(None)

        async def undo_error() -> Result[None, LeaseError]:
            return Error(BOOM)

        async def undo_raises() -> Result[None, LeaseError]:
            raise RuntimeError("compensator crashed")

        await saga.step("a", ok(1), compensate=lambda _: undo_ok())
        await saga.step("b", ok(2), compensate=lambda _: undo_error())
        await saga.step("c", ok(3), compensate=lambda _: undo_raises())

        report = await saga.rollback()

        assert undone == ["ok"]
        assert report.run == 1
        assert report.failed == 2
        assert not report.complete

    async def test_rollback_clears_the_stack(self):
        calls: list[int] = []
        saga = Compensations()

        async def undo() -> None:
            calls.append(1)

        await saga.step("a", ok(1), compensate=lambda _: undo())
        await saga.rollback()
        await saga.rollback()

        assert calls == [1]
