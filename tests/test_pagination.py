import asyncio

import httpx
import pytest

from market_monitor.errors import HttpError, NetworkError
from market_monitor.schemas.market import LogsResponse
from market_monitor.services.pagination import LatestRequestGuard, PageState, PaginationController
from tests.backend_stub import BackendState, backend_client, logs_payload, mock_client, snapshot_payload


class GatedClient:
    """list_snapshots blocks until the test resolves the matching future."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.gates: list[asyncio.Future] = []

    async def list_snapshots(self, **params) -> LogsResponse:
        gate = asyncio.get_running_loop().create_future()
        self.calls.append(params)
        self.gates.append(gate)
        return await gate


def _page(first_id: int, count: int, total: int, **extra) -> LogsResponse:
    rows = [snapshot_payload(id=first_id + idx, **extra) for idx in range(count)]
    return LogsResponse.model_validate(logs_payload(rows, total=total))


@pytest.mark.parametrize(
    "limit,total,offset,pages,current",
    [
        (50, 0, 0, 1, 1),
        (50, 1, 0, 1, 1),
        (50, 50, 0, 1, 1),
        (50, 51, 50, 2, 2),
        (10, 95, 90, 10, 10),
        (25, 100, 25, 4, 2),
        (10, 20, 40, 2, 2),  # total shrank under the current offset
    ],
)
def test_page_state_arithmetic(limit, total, offset, pages, current):
    state = PageState(timeframe="1m", symbol="ETHUSDT", limit=limit, offset=offset, total=total)
    assert state.total_pages == pages == max(1, -(-total // limit))
    assert state.current_page == current
    assert 1 <= state.current_page <= state.total_pages


def test_page_state_item_range():
    state = PageState(timeframe="1m", symbol="ETHUSDT", limit=50, offset=100, total=120)
    assert (state.first_item, state.last_item) == (101, 120)
    assert state.has_previous and not state.has_next
    empty = PageState(timeframe="1m", symbol="ETHUSDT", limit=50)
    assert (empty.first_item, empty.last_item) == (0, 0)
    assert not empty.has_previous and not empty.has_next


def test_request_guard_only_accepts_latest_token():
    guard = LatestRequestGuard()
    first = guard.issue()
    second = guard.issue()
    assert not guard.is_current(first)
    assert guard.is_current(second)
    guard.invalidate()
    assert not guard.is_current(second)


def test_paging_through_backend_rows():
    state = BackendState(snapshots=[snapshot_payload(id=i) for i in range(1, 24)])
    controller = PaginationController(backend_client(state), timeframe="1m", symbol="ETHUSDT", limit=10)

    async def runner() -> None:
        await controller.refresh()
        assert controller.state.total == 23
        assert controller.state.total_pages == 3
        assert [s.id for s in controller.snapshots][:2] == [1, 2]

        assert await controller.go_to_page(3)
        assert controller.state.offset == 20
        assert [s.id for s in controller.snapshots] == [21, 22, 23]
        assert controller.state.current_page == 3

        assert await controller.previous_page()
        assert controller.state.current_page == 2
        assert controller.last_loaded_at is not None

    asyncio.run(runner())


def test_go_to_page_out_of_range_is_noop():
    client = GatedClient()
    controller = PaginationController(client, timeframe="1m", symbol="ETHUSDT", limit=10)

    async def runner() -> None:
        task = asyncio.create_task(controller.refresh())
        await asyncio.sleep(0)
        client.gates[0].set_result(_page(1, 10, total=30))
        await task
        before = controller.state
        for page in (0, -1, 4, 100):
            assert await controller.go_to_page(page) is False
        assert controller.state == before
        assert len(client.calls) == 1
        assert await controller.previous_page() is False
        assert len(client.calls) == 1

    asyncio.run(runner())


def test_filter_and_limit_changes_reset_offset_and_fetch_once():
    client = GatedClient()
    controller = PaginationController(client, timeframe="1m", symbol="ETHUSDT", limit=10)

    async def settle(coro) -> None:
        task = asyncio.create_task(coro)
        await asyncio.sleep(0)
        client.gates[-1].set_result(_page(1, 10, total=100))
        await task

    async def runner() -> None:
        await settle(controller.refresh())
        await settle(controller.go_to_page(5))
        assert controller.state.offset == 40

        await settle(controller.set_filter("5m", "btcusdt"))
        assert controller.state.offset == 0
        assert (controller.state.timeframe, controller.state.symbol) == ("5m", "BTCUSDT")
        assert client.calls[-1] == {
            "timeframe": "5m",
            "symbol": "BTCUSDT",
            "limit": 10,
            "offset": 0,
            "start_date": None,
            "end_date": None,
        }

        await settle(controller.go_to_page(2))
        await settle(controller.set_limit(25))
        assert (controller.state.limit, controller.state.offset) == (25, 0)
        assert len(client.calls) == 5

        # Nothing changed: no request.
        assert await controller.set_limit(25) is False
        assert await controller.set_filter("5m", "BTCUSDT") is False
        assert len(client.calls) == 5

    asyncio.run(runner())


def test_invalid_filter_values_rejected():
    controller = PaginationController(GatedClient())
    with pytest.raises(ValueError):
        asyncio.run(controller.set_filter("7m", "ETHUSDT"))
    with pytest.raises(ValueError):
        asyncio.run(controller.set_limit(0))


@pytest.mark.parametrize("resolve_order", [(1, 0), (0, 1)])
def test_only_latest_filter_response_is_applied(resolve_order):
    client = GatedClient()
    controller = PaginationController(client, timeframe="1m", symbol="ETHUSDT", limit=10)

    async def runner() -> None:
        first = asyncio.create_task(controller.set_filter("5m", "ETHUSDT"))
        await asyncio.sleep(0)
        second = asyncio.create_task(controller.set_filter("15m", "BTCUSDT"))
        await asyncio.sleep(0)
        assert len(client.calls) == 2

        responses = [
            _page(100, 3, total=3, timeframe="5m"),
            _page(200, 2, total=42, symbol="BTCUSDT", timeframe="15m"),
        ]
        for idx in resolve_order:
            client.gates[idx].set_result(responses[idx])
            await asyncio.sleep(0)
        await asyncio.gather(first, second)

        assert controller.state.timeframe == "15m"
        assert controller.state.total == 42
        assert [s.id for s in controller.snapshots] == [200, 201]
        assert not controller.loading

    asyncio.run(runner())


def test_stale_failure_does_not_set_error():
    client = GatedClient()
    controller = PaginationController(client, timeframe="1m", symbol="ETHUSDT", limit=10)

    async def runner() -> None:
        first = asyncio.create_task(controller.set_filter("5m", "ETHUSDT"))
        await asyncio.sleep(0)
        second = asyncio.create_task(controller.set_filter("1h", "ETHUSDT"))
        await asyncio.sleep(0)
        client.gates[0].set_exception(NetworkError("connection refused"))
        client.gates[1].set_result(_page(1, 1, total=1))
        await asyncio.gather(first, second)
        assert controller.error is None
        assert controller.state.total == 1

    asyncio.run(runner())


def test_failure_keeps_previous_page():
    client = GatedClient()
    controller = PaginationController(client, timeframe="1m", symbol="ETHUSDT", limit=10)

    async def runner() -> None:
        task = asyncio.create_task(controller.refresh())
        await asyncio.sleep(0)
        client.gates[0].set_result(_page(1, 10, total=30))
        await task

        task = asyncio.create_task(controller.go_to_page(2))
        await asyncio.sleep(0)
        client.gates[1].set_exception(HttpError(500, "Server error"))
        await task

        assert controller.error is not None
        assert "Server error" in controller.error
        assert [s.id for s in controller.snapshots][0] == 1
        assert controller.state.total == 30
        assert not controller.loading

        # Retry clears the error.
        task = asyncio.create_task(controller.refresh())
        await asyncio.sleep(0)
        assert controller.loading
        client.gates[2].set_result(_page(11, 10, total=30))
        await task
        assert controller.error is None
        assert controller.snapshots[0].id == 11

    asyncio.run(runner())


def test_selection_follows_current_page():
    client = GatedClient()
    controller = PaginationController(client, limit=10)

    async def runner() -> None:
        task = asyncio.create_task(controller.refresh())
        await asyncio.sleep(0)
        client.gates[0].set_result(_page(1, 3, total=3))
        await task
        assert controller.select(2).id == 2
        assert controller.select(77) is None
        controller.select(None)
        assert controller.selected is None

    asyncio.run(runner())


def test_results_ignored_after_close():
    client = GatedClient()
    controller = PaginationController(client, limit=10)

    async def runner() -> None:
        task = asyncio.create_task(controller.refresh())
        await asyncio.sleep(0)
        controller.close()
        client.gates[0].set_result(_page(1, 3, total=3))
        await task
        assert controller.snapshots == ()
        await controller.refresh()
        assert len(client.calls) == 1

    asyncio.run(runner())


def test_undecodable_response_becomes_error_state():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(b"garbage"))

    controller = PaginationController(mock_client(handler), limit=10)
    asyncio.run(controller.refresh())
    assert not controller.loading
    assert controller.error is not None
    assert controller.snapshots == ()


@pytest.mark.parametrize("limit", [0, -5])
def test_explicit_non_positive_limit_is_rejected(limit):
    with pytest.raises(ValueError):
        PaginationController(GatedClient(), limit=limit)
