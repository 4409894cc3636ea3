"""Integration tests for extensions applied to engine instances."""

import asyncio

import pytest

from asynx import (
    ExtensionConfig,
    ExtensionError,
    Observable,
    Pending,
    Ready,
    compose,
    create,
    define_extension,
)


@define_extension
def paginated(api):
    """Load the next page on demand and append it to the loaded items."""

    async def handler(next, context, params):
        offset = len(context.prev_data["items"]) if context.prev_data else 0
        result = await next({"offset": offset})
        result.merge_with_prev_data(array_key="items")
        return result

    return ExtensionConfig(handler=handler, extend={"load_next": api.trigger})


@pytest.mark.integration
@pytest.mark.extension
def test_pagination_accumulates_pages(settle):
    """Two load_next calls merge both pages into one item list"""

    async def scenario():
        # Arrange
        pages = {0: [1, 2, 3], 3: [4, 5, 6]}
        offsets = []

        async def fetch_page(page_size, context, prev_data):
            offsets.append(context.offset)
            await asyncio.sleep(0)
            return {"items": pages[context.offset]}

        feed = create(Observable("page_size", 3), paginated(fetch_page))

        # Act
        feed.load_next()
        await settle(feed)
        first = feed.state.value
        feed.load_next()
        await settle(feed)
        return first, feed.state.value, offsets

    first, final, offsets = asyncio.run(scenario())

    # Assert
    assert first == Ready({"items": [1, 2, 3]})
    assert final == Ready({"items": [1, 2, 3, 4, 5, 6]})
    assert offsets == [0, 3]


@pytest.mark.integration
@pytest.mark.extension
def test_composed_merges_happen_once(settle):
    """Two extensions asking to merge still merge the previous page once"""

    def merging(name, order):
        @define_extension
        def extension(api):
            async def handler(next, context, params):
                order.append(name)
                result = await next()
                result.merge_with_prev_data()
                return result

            return {"handler": handler}

        return extension

    async def scenario():
        order = []
        cell = Observable("n", 1)
        both = compose(merging("outer", order), merging("inner", order))
        instance = create(cell, both(lambda s, c, p: [s]))

        instance.trigger()
        await settle(instance)
        cell.set(2)
        await settle(instance)
        return instance.state.value, order

    state, order = asyncio.run(scenario())

    assert state == Ready([1, 2])
    assert order == ["outer", "inner", "outer", "inner"]


@pytest.mark.integration
@pytest.mark.extension
def test_extension_state_view_carries_its_own_params(settle):
    """Only the extension whose trigger fired sees the params while Pending"""

    async def scenario():
        views = {}
        handler_params = {}

        def tagged(name):
            @define_extension
            def extension(api):
                views[name] = api.state

                def handler(next, context, params):
                    handler_params[name] = params
                    return next()

                return {"handler": handler, "extend": {f"load_{name}": api.trigger}}

            return extension

        release = asyncio.get_running_loop().create_future()

        async def producer(source, context, prev_data):
            await release
            return source

        extensions = compose(tagged("first"), tagged("second"))
        instance = create(Observable("n", 1), extensions(producer))

        instance.load_second({"page": 2})
        await asyncio.sleep(0)
        during = (
            instance.state.value,
            views["first"].value,
            views["second"].value,
        )

        release.set_result(None)
        await settle(instance)
        after = views["first"].value, views["second"].value
        return during, after, handler_params

    during, after, handler_params = asyncio.run(scenario())

    engine_state, first_view, second_view = during
    assert engine_state == Pending()
    assert first_view == Pending(params=None)
    assert second_view == Pending(params={"page": 2})
    assert after == (Ready(1), Ready(1))
    assert handler_params == {"first": None, "second": {"page": 2}}


@pytest.mark.integration
@pytest.mark.extension
def test_last_trigger_params_in_a_batch_win(settle):
    async def scenario():
        received = []

        @define_extension
        def recorder(api):
            def handler(next, context, params):
                received.append(params)
                return next()

            return {"handler": handler, "extend": {"load": api.trigger}}

        instance = create(Observable("n", 1), recorder(lambda s, c, p: s))
        instance.load("first")
        instance.load("second")
        await settle(instance)
        return received

    assert asyncio.run(scenario()) == ["second"]


@pytest.mark.integration
@pytest.mark.extension
def test_plain_trigger_sends_no_params(settle):
    async def scenario():
        received = []

        @define_extension
        def recorder(api):
            def handler(next, context, params):
                received.append(params)
                return next()

            return {"handler": handler, "extend": {"load": api.trigger}}

        instance = create(Observable("n", 1), recorder(lambda s, c, p: s))
        instance.load("page")
        instance.trigger()
        await settle(instance)
        return received

    assert asyncio.run(scenario()) == [None]


@pytest.mark.integration
@pytest.mark.extension
def test_handler_runs_once_per_execution(settle):
    async def scenario():
        calls = []

        @define_extension
        def counting(api):
            async def handler(next, context, params):
                calls.append(context.prev_data)
                return await next()

            return ExtensionConfig(handler=handler)

        cell = Observable("n", 1)
        instance = create(cell, counting(lambda s, c, p: s))
        instance.trigger()
        await settle(instance)
        cell.set(2)
        await settle(instance)
        return calls

    assert asyncio.run(scenario()) == [None, 1]


@pytest.mark.integration
@pytest.mark.extension
def test_handler_error_moves_to_error_state(settle):
    async def scenario():
        failure = PermissionError("denied")

        @define_extension
        def guard(api):
            async def handler(next, context, params):
                raise failure

            return {"handler": handler}

        instance = create(
            Observable("n", 1), guard(lambda s, c, p: s), {"log_errors": False}
        )
        instance.trigger()
        await settle(instance)
        return instance.state.value, failure

    state, failure = asyncio.run(scenario())
    assert state.is_error
    assert state.cause is failure


@pytest.mark.integration
@pytest.mark.extension
def test_handler_skipping_next_is_reported_as_error(settle):
    async def scenario():
        @define_extension
        def lazy(api):
            return {"handler": lambda next, context, params: "short-circuit"}

        instance = create(
            Observable("n", 1), lazy(lambda s, c, p: s), {"log_errors": False}
        )
        instance.trigger()
        await settle(instance)
        return instance.state.value

    state = asyncio.run(scenario())
    assert isinstance(state.cause, ExtensionError)


@pytest.mark.integration
@pytest.mark.extension
def test_extension_extras_become_attributes():
    marker = object()

    @define_extension
    def extras(api):
        return {"extend": {"marker": marker}}

    instance = create(Observable("n", 1), extras(lambda s, c, p: s))

    assert instance.marker is marker
    with pytest.raises(AttributeError):
        instance.missing


@pytest.mark.integration
@pytest.mark.extension
@pytest.mark.parametrize("name", ["state", "trigger", "set_data", "_token"])
def test_extension_extra_cannot_shadow_engine_attributes(name):
    @define_extension
    def shadowing(api):
        return {"extend": {name: None}}

    with pytest.raises(ExtensionError, match=name):
        create(Observable("n", 1), shadowing(lambda s, c, p: s))


@pytest.mark.integration
@pytest.mark.extension
def test_extensions_cannot_share_an_extra_name():
    @define_extension
    def first(api):
        return {"extend": {"load": api.trigger}}

    @define_extension
    def second(api):
        return {"extend": {"load": api.trigger}}

    with pytest.raises(ExtensionError, match="load"):
        create(Observable("n", 1), compose(first, second)(lambda s, c, p: s))


@pytest.mark.integration
@pytest.mark.extension
def test_producer_must_be_callable():
    with pytest.raises(TypeError):
        create(Observable("n", 1), "not a producer")
