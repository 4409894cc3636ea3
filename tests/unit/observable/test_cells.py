"""Unit tests for observable cells, computed observables and events."""

import pytest

from asynx import NULL_EVENT, ComputedObservable, Event, Observable, transaction
from asynx.errors import ReadOnlyError


@pytest.mark.unit
@pytest.mark.observable
def test_observable_provides_access_to_initial_value():
    """Observable returns the value it was created with"""
    obs = Observable("test_key", "initial_value")
    assert obs.value == "initial_value"
    assert obs.get() == "initial_value"


@pytest.mark.unit
@pytest.mark.observable
def test_observable_updates_value_when_set():
    """Observable value changes when set() is called with new value"""
    # Arrange
    obs = Observable("test", "initial")

    # Act
    obs.set("updated")

    # Assert
    assert obs.value == "updated"


@pytest.mark.unit
@pytest.mark.observable
def test_observable_value_setter_notifies_observers():
    """Assigning to .value behaves like set()"""
    obs = Observable("test", 1)
    seen = []
    obs.subscribe(seen.append)

    obs.value = 2

    assert seen == [2]


@pytest.mark.unit
@pytest.mark.observable
def test_observable_skips_notification_for_equal_value():
    """Setting an equal value does not notify observers"""
    # Arrange
    obs = Observable("test", {"a": 1})
    seen = []
    obs.subscribe(seen.append)

    # Act
    obs.set({"a": 1})
    obs.set({"a": 2})

    # Assert
    assert seen == [{"a": 2}]


@pytest.mark.unit
@pytest.mark.observable
def test_subscribe_returns_observable_for_chaining():
    """subscribe() returns the observable itself"""
    obs = Observable("test", 0)
    assert obs.subscribe(lambda _: None) is obs


@pytest.mark.unit
@pytest.mark.observable
def test_unsubscribed_observer_is_not_called():
    """An unsubscribed observer no longer receives notifications"""
    # Arrange
    obs = Observable("test", 0)
    seen = []
    obs.subscribe(seen.append)
    obs.set(1)

    # Act
    obs.unsubscribe(seen.append)
    obs.set(2)

    # Assert
    assert seen == [1]
    assert not obs.has_observer(seen.append)


@pytest.mark.unit
@pytest.mark.observable
def test_observable_repr_shows_key_and_value():
    """Observable repr shows both key and current value"""
    obs = Observable("test", "value")
    assert repr(obs) == "Observable('test', 'value')"


@pytest.mark.unit
@pytest.mark.observable
def test_computed_observable_follows_all_sources():
    """ComputedObservable recomputes when any source changes"""
    # Arrange
    price = Observable("price", 10)
    quantity = Observable("quantity", 3)
    total = ComputedObservable([price, quantity], lambda p, q: p * q)

    # Act
    price.set(20)

    # Assert
    assert total.value == 60


@pytest.mark.unit
@pytest.mark.observable
def test_rshift_derives_a_read_only_observable():
    """obs >> f creates a computed observable that cannot be set"""
    # Arrange
    base = Observable("base", 2)
    doubled = base >> (lambda value: value * 2)

    # Act & Assert
    assert doubled.value == 4
    with pytest.raises(ReadOnlyError, match="read-only"):
        doubled.set(10)


@pytest.mark.unit
@pytest.mark.observable
def test_then_is_an_alias_for_rshift():
    base = Observable("base", "a")
    assert base.then(str.upper).value == "A"


@pytest.mark.unit
@pytest.mark.observable
def test_computed_observable_notifies_only_on_changed_result():
    """A derived value that does not change does not notify"""
    # Arrange
    base = Observable("base", 1)
    parity = base >> (lambda value: value % 2)
    seen = []
    parity.subscribe(seen.append)

    # Act
    base.set(3)
    base.set(4)

    # Assert
    assert seen == [0]


@pytest.mark.unit
@pytest.mark.observable
def test_detached_computed_observable_keeps_last_value():
    """detach() stops recomputation and freezes the value"""
    # Arrange
    base = Observable("base", 1)
    doubled = ComputedObservable([base], lambda value: value * 2)

    # Act
    doubled.detach()
    base.set(5)

    # Assert
    assert doubled.value == 2


@pytest.mark.unit
@pytest.mark.observable
def test_computed_observable_requires_sources():
    with pytest.raises(ValueError):
        ComputedObservable([], lambda: 0)


@pytest.mark.unit
@pytest.mark.observable
def test_chain_propagation_is_breadth_first():
    """Observers of a diamond see each level before the next one"""
    # Arrange
    root = Observable("root", 1)
    left = root >> (lambda value: value + 1)
    right = root >> (lambda value: value + 2)
    order = []
    left.subscribe(lambda value: order.append(("left", value)))
    right.subscribe(lambda value: order.append(("right", value)))
    root.subscribe(lambda value: order.append(("root", value)))

    # Act
    root.set(10)

    # Assert
    assert order == [("root", 10), ("left", 11), ("right", 12)]


@pytest.mark.unit
@pytest.mark.observable
def test_long_computed_chain_does_not_overflow_the_stack():
    """Propagation through thousands of derived nodes is iterative"""
    # Arrange
    base = Observable("base", 0)
    node = base
    for _ in range(3000):
        node = node >> (lambda value: value + 1)

    # Act
    base.set(1)

    # Assert
    assert node.value == 3001


@pytest.mark.unit
@pytest.mark.observable
def test_transaction_defers_notifications_until_exit():
    """Observers only run once the outermost transaction exits"""
    # Arrange
    first = Observable("first", 0)
    second = Observable("second", 0)
    total = ComputedObservable([first, second], lambda a, b: a + b)
    seen = []
    total.subscribe(seen.append)

    # Act
    with transaction():
        first.set(1)
        second.set(2)
        assert seen == []

    # Assert
    assert total.value == 3
    assert seen[-1] == 3


@pytest.mark.unit
@pytest.mark.observable
def test_observer_error_propagates_to_setter():
    """An observer that raises surfaces its error from set()"""
    # Arrange
    obs = Observable("test", 0)

    def failing(_value):
        raise KeyError("boom")

    obs.subscribe(failing)

    # Act & Assert
    with pytest.raises(KeyError):
        obs.set(1)


@pytest.mark.unit
@pytest.mark.observable
def test_event_delivers_payload_to_observers():
    """Calling an event fires its payload"""
    # Arrange
    event = Event("clicked")
    seen = []
    event.subscribe(seen.append)

    # Act
    event("payload")
    event()

    # Assert
    assert seen == ["payload", None]


@pytest.mark.unit
@pytest.mark.observable
def test_event_fires_repeated_equal_payloads():
    """Events carry occurrences, not values, so equal payloads are delivered"""
    event = Event()
    seen = []
    event.subscribe(seen.append)

    event(1)
    event(1)

    assert seen == [1, 1]


@pytest.mark.unit
@pytest.mark.observable
def test_event_prepend_maps_payload():
    """prepend() builds an event that maps into the original one"""
    # Arrange
    load = Event("load")
    seen = []
    load.subscribe(seen.append)
    load_page = load.prepend(lambda page: {"page": page})

    # Act
    load_page(3)

    # Assert
    assert seen == [{"page": 3}]


@pytest.mark.unit
@pytest.mark.observable
def test_event_unsubscribe_and_null_event_repr():
    event = Event("e")
    seen = []
    event.subscribe(seen.append)
    event.unsubscribe(seen.append)

    event(1)

    assert seen == []
    assert not event.has_observer(seen.append)
    assert repr(NULL_EVENT) == "NULL_EVENT"
