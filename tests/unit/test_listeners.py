"""监听器注册表单元测试。"""

import pytest

from src.core.domain.listeners import ListenerRegistry

pytestmark = pytest.mark.anyio


async def test_publish_in_registration_order():
    registry: ListenerRegistry[int] = ListenerRegistry()
    calls: list[str] = []

    registry.subscribe(lambda value: calls.append(f"a{value}"))

    async def second(value: int) -> None:
        calls.append(f"b{value}")

    registry.subscribe(second)

    delivered = await registry.publish(1)

    assert calls == ["a1", "b1"]
    assert delivered == 2


async def test_failing_listener_is_reported_and_skipped():
    errors: list[tuple[object, Exception]] = []
    registry: ListenerRegistry[str] = ListenerRegistry(
        on_error=lambda listener, error: errors.append((listener, error))
    )
    received: list[str] = []

    def broken(value: str) -> None:
        raise ValueError("boom")

    registry.subscribe(broken)
    registry.subscribe(received.append)

    delivered = await registry.publish("x")

    assert received == ["x"]
    assert delivered == 1
    assert errors[0][0] is broken
    assert str(errors[0][1]) == "boom"


async def test_unsubscribe_twice_is_harmless():
    registry: ListenerRegistry[int] = ListenerRegistry()
    received: list[int] = []
    first = registry.subscribe(received.append)
    registry.subscribe(lambda value: None)

    first.unsubscribe()
    first()

    await registry.publish(3)
    assert received == []
    assert len(registry) == 1
    assert not first.active


async def test_unsubscribe_during_publish_skips_removed_listener():
    registry: ListenerRegistry[int] = ListenerRegistry()
    received: list[int] = []
    handles = {}

    def first(value: int) -> None:
        handles["second"].unsubscribe()

    registry.subscribe(first)
    handles["second"] = registry.subscribe(received.append)

    await registry.publish(1)

    assert received == []


async def test_clear():
    registry: ListenerRegistry[int] = ListenerRegistry()
    registry.subscribe(lambda value: None)

    registry.clear()

    assert len(registry) == 0
    assert await registry.publish(1) == 0
