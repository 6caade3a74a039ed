import asyncio

import pytest

from localmind.engine.errors import EngineBusyError, GenerationError, NoActiveEngineError
from localmind.engine.facades.base import AsyncTaskFacade
from localmind.engine.protocol import CapabilityInfo, Complete, Error, Ready, Start, Update
from localmind.engine.router import BackendRouter
from localmind.engine.session import GenerationSession
from localmind.engine.types import EngineStatus, ModelRef, Turn


class _FakeFacade(AsyncTaskFacade):
    def __init__(self, kind: str) -> None:
        super().__init__()
        self.backend = kind
        self.fail_next = False
        self.hold: asyncio.Event | None = None
        self.check_error: str | None = None

    async def _run_check(self) -> None:
        if self.check_error is not None:
            raise RuntimeError(self.check_error)
        self._emit_check_result(CapabilityInfo(data={"type": self.backend}))

    async def _run_load(self, model_id: str) -> None:
        if self.hold is not None:
            await self.hold.wait()
        self._broadcast(Ready())

    async def _run_generate(self, turns, options) -> None:
        session = GenerationSession(self._broadcast)
        session.start(1)
        if self.fail_next:
            self.fail_next = False
            session.fail("backend exploded")
            return
        session.on_text(f"{self.backend}:{turns[-1].content}")
        if self.hold is not None:
            await self.hold.wait()
        session.finish(interrupted=self._stopping.should_stop())


class _Factory:
    def __init__(self) -> None:
        self.created: list[_FakeFacade] = []
        self.hold: asyncio.Event | None = None

    def __call__(self, kind: str) -> _FakeFacade:
        facade = _FakeFacade(kind)
        facade.hold = self.hold
        self.created.append(facade)
        return facade


async def _next(queue: asyncio.Queue, *types, timeout: float = 5.0):
    async def _wait():
        while True:
            event = await queue.get()
            if isinstance(event, types):
                return event

    return await asyncio.wait_for(_wait(), timeout)


def test_operations_without_active_engine_raise() -> None:
    router = BackendRouter(facade_factory=_Factory())

    assert router.backend is None
    assert router.facade is None
    with pytest.raises(NoActiveEngineError):
        _ = router.status
    with pytest.raises(NoActiveEngineError):
        _ = router.is_ready
    with pytest.raises(NoActiveEngineError):
        router.generate([Turn("user", "hi")])
    with pytest.raises(NoActiveEngineError):
        router.interrupt()
    with pytest.raises(NoActiveEngineError):
        router.get_model_info()


def test_load_routes_to_backend_kind() -> None:
    async def main() -> None:
        factory = _Factory()
        router = BackendRouter(facade_factory=factory)
        queue: asyncio.Queue = asyncio.Queue()
        router.on_message(queue.put_nowait)

        ref = router.load_model("qwen3:4b")
        assert ref == ModelRef(kind="local-server", model_id="qwen3:4b")
        assert router.backend == "local-server"
        assert router.status is EngineStatus.LOADING
        await _next(queue, Ready)
        assert router.is_ready
        assert router.model_id == "qwen3:4b"

        info = router.get_model_info()
        assert info["backend"] == "local-server"
        assert info["status"] == "ready"
        assert info["card"]["name"] == "Qwen3 4B"

        router.load_model(ModelRef(kind="local-server", model_id="gemma3:4b"))
        await _next(queue, Ready)
        assert len(factory.created) == 1

    asyncio.run(main())


def test_subscriber_survives_backend_swap() -> None:
    async def main() -> None:
        factory = _Factory()
        router = BackendRouter(facade_factory=factory)
        events: list = []
        queue: asyncio.Queue = asyncio.Queue()
        router.on_message(events.append)
        router.on_message(queue.put_nowait)

        router.load_model("Qwen/Qwen3-0.6B")
        await _next(queue, Ready)
        first = router.facade

        router.load_model("openai/gpt-4o")
        await _next(queue, Ready)
        result = await router.generate_full([Turn("user", "ping")])

        assert first is not None and first.terminated
        assert router.backend == "remote-api"
        assert result.text == "remote-api:ping"
        assert sum(isinstance(e, Ready) for e in events) == 2
        assert any(isinstance(e, Update) and e.output == "remote-api:ping" for e in events)
        assert router.facade.listener_count == 2

    asyncio.run(main())


def test_unsubscribe_detaches_from_router_and_facade() -> None:
    async def main() -> None:
        router = BackendRouter(facade_factory=_Factory())
        events: list = []
        unsubscribe = router.on_message(events.append)
        queue: asyncio.Queue = asyncio.Queue()
        router.on_message(queue.put_nowait)

        router.load_model("qwen3:4b")
        await _next(queue, Ready)
        unsubscribe()
        router.load_model("Qwen/Qwen3-0.6B")
        await _next(queue, Ready)

        assert sum(isinstance(e, Ready) for e in events) == 1
        assert router.listener_count == 1
        assert router.facade.listener_count == 1

    asyncio.run(main())


def test_generate_full_leaves_no_listeners_behind() -> None:
    async def main() -> None:
        router = BackendRouter(facade_factory=_Factory())
        queue: asyncio.Queue = asyncio.Queue()
        router.on_message(queue.put_nowait)
        router.load_model("qwen3:4b")
        await _next(queue, Ready)
        baseline = router.facade.listener_count

        for i in range(6):
            if i % 2:
                router.facade.fail_next = True
                with pytest.raises(GenerationError, match="backend exploded"):
                    await router.generate_full([Turn("user", str(i))])
            else:
                await router.generate_full([Turn("user", str(i))])
            assert router.status is EngineStatus.READY

        assert router.facade.listener_count == baseline

    asyncio.run(main())


def test_check_activates_requested_kind() -> None:
    async def main() -> None:
        factory = _Factory()
        router = BackendRouter(facade_factory=factory)
        queue: asyncio.Queue = asyncio.Queue()
        router.on_message(queue.put_nowait)

        router.check("local-server")
        info = await _next(queue, CapabilityInfo, Error)
        assert info.data == {"type": "local-server"}

        router.check()
        info = await _next(queue, CapabilityInfo, Error)
        assert info.data == {"type": "local-server"}
        assert len(factory.created) == 1

    asyncio.run(main())


def test_terminate_keeps_subscribers_for_next_backend() -> None:
    async def main() -> None:
        router = BackendRouter(facade_factory=_Factory())
        queue: asyncio.Queue = asyncio.Queue()
        router.on_message(queue.put_nowait)
        router.load_model("qwen3:4b")
        await _next(queue, Ready)

        router.terminate()
        assert router.backend is None
        with pytest.raises(NoActiveEngineError):
            _ = router.model_id

        router.load_model("qwen3:8b")
        await _next(queue, Ready)
        router.generate([Turn("user", "again")])
        done = await _next(queue, Complete, Error)
        assert isinstance(done, Complete)

    asyncio.run(main())


def test_swap_is_rejected_while_generating() -> None:
    async def main() -> None:
        factory = _Factory()
        router = BackendRouter(facade_factory=factory)
        events: list = []
        queue: asyncio.Queue = asyncio.Queue()
        router.on_message(events.append)
        router.on_message(queue.put_nowait)
        router.load_model("qwen3:4b")
        await _next(queue, Ready)

        hold = asyncio.Event()
        router.facade.hold = hold
        task = asyncio.create_task(router.generate_full([Turn("user", "long")]))
        await _next(queue, Start)

        with pytest.raises(EngineBusyError):
            router.load_model("openai/gpt-4o")
        with pytest.raises(EngineBusyError):
            router.check("accelerator")
        assert router.backend == "local-server"
        assert router.status is EngineStatus.GENERATING
        assert len(factory.created) == 1

        hold.set()
        result = await asyncio.wait_for(task, 5.0)
        assert result.text == "local-server:long"
        assert isinstance(events[-1], Complete)

        router.load_model("openai/gpt-4o")
        await _next(queue, Ready)
        assert router.backend == "remote-api"
        assert factory.created[0].terminated

    asyncio.run(main())


def test_swap_is_rejected_while_loading() -> None:
    async def main() -> None:
        factory = _Factory()
        factory.hold = asyncio.Event()
        router = BackendRouter(facade_factory=factory)
        queue: asyncio.Queue = asyncio.Queue()
        router.on_message(queue.put_nowait)

        router.load_model("qwen3:4b")
        with pytest.raises(EngineBusyError):
            router.load_model("Qwen/Qwen3-0.6B")
        assert router.status is EngineStatus.LOADING

        factory.hold.set()
        await _next(queue, Ready)
        assert router.model_id == "qwen3:4b"
        assert len(factory.created) == 1

    asyncio.run(main())


def test_failed_check_does_not_end_a_running_generation() -> None:
    async def main() -> None:
        router = BackendRouter(facade_factory=_Factory())
        queue: asyncio.Queue = asyncio.Queue()
        router.on_message(queue.put_nowait)
        router.load_model("qwen3:4b")
        await _next(queue, Ready)

        hold = asyncio.Event()
        router.facade.hold = hold
        router.facade.check_error = "server went away"
        task = asyncio.create_task(router.generate_full([Turn("user", "still here")]))
        await _next(queue, Start)

        router.check()
        failure = await _next(queue, Error)
        assert "server went away" in failure.message
        assert router.status is EngineStatus.GENERATING
        with pytest.raises(EngineBusyError):
            router.generate([Turn("user", "second")])

        hold.set()
        result = await asyncio.wait_for(task, 5.0)
        assert result.text == "local-server:still here"
        assert router.is_ready

    asyncio.run(main())
