import asyncio
from unittest.mock import AsyncMock

import pytest

from feed.controller import FeedController
from feed.errors import (
    EmptyFeedError,
    FeedError,
    InvalidSubmission,
    LoadFailed,
    NotAuthenticated,
    RemoteError,
    SendFailed,
)
from feed.models import ChangeBatch, ChangeKind, FeedChange, PageResult

FEED_ID = "feed-1"
USER_ID = "user-1"


def ids(items):
    return [item.item_id for item in items]


def seed(remote, raw_item, count, feed_id=FEED_ID):
    return remote.seed_history(feed_id, [raw_item(f"m{i}", text=f"msg {i}", created_at=float(i)) for i in range(1, count + 1)])


@pytest.mark.asyncio
async def test_open_loads_current_window_and_marks_read(controller, remote, raw_item):
    seed(remote, raw_item, 5)

    items = await controller.open(FEED_ID)
    await asyncio.sleep(0)

    assert ids(items) == ["m3", "m4", "m5"]
    assert controller.cursor.more is True
    assert remote.read_marks == [FEED_ID]


@pytest.mark.asyncio
async def test_open_requires_user(remote, settings):
    controller = FeedController(remote, settings=settings)

    with pytest.raises(NotAuthenticated):
        await controller.open(FEED_ID)


@pytest.mark.asyncio
async def test_open_failure_reports_load_failed(controller, remote, mocker):
    mocker.patch.object(remote, "fetch_items", AsyncMock(side_effect=RemoteError("down")))
    errors = []
    controller.add_error_listener(errors.append)

    with pytest.raises(LoadFailed):
        await controller.open(FEED_ID)
    assert isinstance(errors[0], LoadFailed)


@pytest.mark.asyncio
async def test_open_failure_closes_feed(controller, remote, mocker):
    mocker.patch.object(remote, "fetch_items", AsyncMock(side_effect=RemoteError("down")))

    with pytest.raises(LoadFailed):
        await controller.open(FEED_ID)

    assert controller.feed_id is None
    assert remote._subscribers.get(FEED_ID) == []
    with pytest.raises(FeedError):
        controller.submit("hello")


@pytest.mark.asyncio
async def test_submit_rejected_while_initial_items_load(controller, remote, raw_item, mocker):
    release = asyncio.Event()

    async def slow_fetch(feed_id):
        await release.wait()
        return [raw_item("m1", created_at=1.0)]

    mocker.patch.object(remote, "fetch_items", side_effect=slow_fetch)
    opening = asyncio.ensure_future(controller.open(FEED_ID))
    await asyncio.sleep(0)

    with pytest.raises(FeedError):
        controller.submit("too early")
    release.set()
    await opening

    assert ids(controller.items) == ["m1"]
    assert len(controller.tracker) == 0


@pytest.mark.asyncio
async def test_mark_read_tasks_do_not_accumulate(controller, remote, raw_item):
    seed(remote, raw_item, 1)

    for _ in range(3):
        await controller.open(FEED_ID)
        for _ in range(3):
            await asyncio.sleep(0)

    assert remote.read_marks == [FEED_ID] * 3
    assert controller._background_tasks == []


@pytest.mark.asyncio
async def test_submit_is_visible_before_acknowledgment(controller, remote, raw_item, mocker):
    seed(remote, raw_item, 1)
    await controller.open(FEED_ID)
    release = asyncio.Event()
    original_send = remote.send_item

    async def slow_send(*args, **kwargs):
        await release.wait()
        return await original_send(*args, **kwargs)

    mocker.patch.object(remote, "send_item", side_effect=slow_send)

    entry = controller.submit("  hello  ")

    assert entry.item.text == "hello"
    assert ids(controller.items) == ["m1", entry.temporary_id]
    assert controller.items[-1].author_id == USER_ID
    assert controller.is_sending is True

    release.set()
    await controller.aclose()


@pytest.mark.asyncio
async def test_send_confirms_without_duplicates(controller, remote, raw_item):
    seed(remote, raw_item, 1)
    await controller.open(FEED_ID)
    snapshots = []
    controller.add_listener(snapshots.append)

    result = await controller.send("hello")
    await remote.drain()

    assert result.item is not None
    assert ids(controller.items) == ["m1", result.item.item_id]
    assert controller.items[-1].pending is False
    assert len(controller.tracker) == 0
    assert controller.is_sending is False
    # optimistic insert, then the confirmed batch
    assert len(snapshots) == 2


@pytest.mark.asyncio
async def test_send_failure_rolls_back(controller, remote, raw_item):
    seed(remote, raw_item, 2)
    await controller.open(FEED_ID)
    before = controller.items
    remote.fail_sends = "rejected"
    errors = []
    controller.add_error_listener(errors.append)

    with pytest.raises(SendFailed) as exc_info:
        await controller.send("doomed")

    assert controller.items == before
    assert len(controller.tracker) == 0
    assert isinstance(errors[0], SendFailed)
    assert errors[0].temporary_id == exc_info.value.temporary_id
    assert controller.last_error is errors[0]


@pytest.mark.asyncio
async def test_submit_failure_surfaces_without_awaiting(controller, remote, raw_item):
    seed(remote, raw_item, 1)
    await controller.open(FEED_ID)
    remote.fail_sends = "offline"
    errors = []
    controller.add_error_listener(errors.append)

    controller.submit("hi")
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert ids(controller.items) == ["m1"]
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_correlation_echo_resolves_exactly(remote, settings, raw_item):
    remote.echo_correlation_id = True
    controller = FeedController(remote, settings=settings, current_user_id=USER_ID)
    seed(remote, raw_item, 1)
    await controller.open(FEED_ID)

    await controller.send("same")
    await controller.send("same")
    await remote.drain()

    assert [item.text for item in controller.items] == ["msg 1", "same", "same"]
    assert not any(item.pending for item in controller.items)


@pytest.mark.asyncio
async def test_submit_validation(controller, remote, raw_item):
    with pytest.raises(FeedError):
        controller.submit("no feed open")

    seed(remote, raw_item, 1)
    await controller.open(FEED_ID)
    with pytest.raises(InvalidSubmission):
        controller.submit("   ")

    controller.current_user_id = None
    with pytest.raises(NotAuthenticated):
        controller.submit("hi")


@pytest.mark.asyncio
async def test_request_more_merges_older_page(controller, remote, raw_item):
    seed(remote, raw_item, 6)
    await controller.open(FEED_ID)

    assert await controller.request_more() is True
    assert ids(controller.items) == ["m2", "m3", "m4", "m5", "m6"]
    assert controller.cursor.more is True

    assert await controller.request_more() is True
    assert ids(controller.items)[0] == "m1"
    assert controller.cursor.more is False

    assert await controller.request_more() is False


@pytest.mark.asyncio
async def test_request_more_noop_when_no_more(controller, remote, raw_item, mocker):
    seed(remote, raw_item, 2)
    await controller.open(FEED_ID)
    controller.cursor.mark_exhausted()
    spy = mocker.spy(remote, "load_previous_page")

    assert await controller.request_more() is False
    assert spy.call_count == 0


@pytest.mark.asyncio
async def test_request_more_noop_while_loading(controller, remote, raw_item, mocker):
    seed(remote, raw_item, 6)
    await controller.open(FEED_ID)
    release = asyncio.Event()

    async def slow_page(feed_id, limit, before_id=None):
        await release.wait()
        return PageResult(items=[], has_more=True)

    mock_load = mocker.patch.object(remote, "load_previous_page", side_effect=slow_page)
    first = asyncio.ensure_future(controller.request_more())
    await asyncio.sleep(0)

    assert await controller.request_more() is False
    release.set()
    await first
    assert mock_load.call_count == 1
    assert controller.cursor.is_loading is False


@pytest.mark.asyncio
async def test_request_more_on_empty_feed_is_rejected(controller, remote, mocker):
    await controller.open("empty-feed")
    spy = mocker.spy(remote, "load_previous_page")

    assert await controller.request_more() is False
    assert spy.call_count == 0
    assert controller.cursor.more is False


@pytest.mark.asyncio
async def test_request_more_failure_allows_retry(controller, remote, raw_item):
    seed(remote, raw_item, 6)
    await controller.open(FEED_ID)
    before = controller.items
    remote.fail_loads = "timeout"
    errors = []
    controller.add_error_listener(errors.append)

    assert await controller.request_more() is False
    assert controller.items == before
    assert controller.cursor.is_loading is False
    assert controller.cursor.more is True
    assert isinstance(errors[0], LoadFailed)

    remote.fail_loads = None
    assert await controller.request_more() is True


@pytest.mark.asyncio
async def test_empty_feed_error_treated_as_no_more_history(controller, remote, raw_item, mocker):
    seed(remote, raw_item, 2)
    await controller.open(FEED_ID)
    mocker.patch.object(remote, "load_previous_page", AsyncMock(side_effect=EmptyFeedError("empty")))
    errors = []
    controller.add_error_listener(errors.append)

    assert await controller.request_more() is False
    assert controller.cursor.more is False
    assert errors == []


@pytest.mark.asyncio
async def test_batches_for_previous_feed_are_ignored(controller, remote, raw_item):
    seed(remote, raw_item, 2, feed_id="old")
    seed(remote, raw_item, 1, feed_id="new")
    await controller.open("old")
    old_handler = controller._batch_handler("old", controller._generation)

    await controller.open("new")
    await old_handler(ChangeBatch(feed_id="old", changes=[FeedChange(kind=ChangeKind.INSERT, item=raw_item("x", created_at=9.0))]))
    await remote.publish(ChangeBatch(feed_id="old", changes=[FeedChange(kind=ChangeKind.INSERT, item=raw_item("y", created_at=9.0))]))

    assert ids(controller.items) == ["m1"]
    assert controller.feed_id == "new"


@pytest.mark.asyncio
async def test_remote_batches_reach_listeners(controller, remote, raw_item):
    seed(remote, raw_item, 1)
    await controller.open(FEED_ID)
    snapshots = []
    controller.add_listener(snapshots.append)

    await remote.publish(ChangeBatch(feed_id=FEED_ID, changes=[
        FeedChange(kind=ChangeKind.INSERT, item=raw_item("m0", created_at=0.5)),
    ]))

    assert ids(snapshots[-1]) == ["m0", "m1"]


@pytest.mark.asyncio
async def test_page_finishing_after_context_switch_is_discarded(controller, remote, raw_item, mocker):
    seed(remote, raw_item, 6)
    seed(remote, raw_item, 1, feed_id="other")
    await controller.open(FEED_ID)
    release = asyncio.Event()

    async def slow_page(feed_id, limit, before_id=None):
        await release.wait()
        return PageResult(items=[raw_item("old-1", created_at=0.1)], has_more=False)

    mocker.patch.object(remote, "load_previous_page", side_effect=slow_page)
    pending = asyncio.ensure_future(controller.request_more())
    await asyncio.sleep(0)

    await controller.open("other")
    release.set()

    assert await pending is False
    assert ids(controller.items) == ["m1"]
    assert controller.cursor.can_load_more() is True


@pytest.mark.asyncio
async def test_failed_reload_reports_load_failed_and_reemits(controller, remote, raw_item, mocker):
    mocker.patch.object(remote, "fetch_items", AsyncMock(side_effect=[[raw_item("m1", created_at=1.0)], RemoteError("down")]))
    await controller.open(FEED_ID)
    snapshots, errors = [], []
    controller.add_listener(snapshots.append)
    controller.add_error_listener(errors.append)

    await remote.publish(ChangeBatch(feed_id=FEED_ID, changes=[
        FeedChange(kind=ChangeKind.INSERT, item=raw_item("m2", created_at=2.0)),
        FeedChange(kind=ChangeKind.MOVE, item=raw_item("m1", created_at=1.0)),
    ]))

    assert ids(snapshots[-1]) == ["m1", "m2"]
    assert len(errors) == 1 and isinstance(errors[0], LoadFailed)
    assert controller.feed_id == FEED_ID
    assert controller.reconciler.is_processing is False
