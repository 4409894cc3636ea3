import asyncio

from asynx import Decline, ExtensionConfig, Observable, create, define_extension

# ------------------------------------------------------------------------------------------------

USERS = {1: "Alice", 2: "Bob", 3: "Charlie"}


async def fetch_user(user_id, context, prev_data):
    # Simulated network call. race() stops waiting as soon as a newer run starts.
    await context.token.race(asyncio.sleep(0.05))
    if user_id not in USERS:
        raise LookupError(f"No user {user_id}")
    return {"id": user_id, "name": USERS[user_id]}


async def derived_values():
    print()
    print("=" * 100)
    print("Deriving a value asynchronously")
    print("-" * 100)
    print()

    user_id = Observable("user_id", 1)
    user = create(user_id, fetch_user, {"log_errors": False})

    # Every state change is published on the state observable.
    user.state.subscribe(lambda state: print(f"user state: {state}"))

    # Nothing runs until a source changes or the instance is triggered.
    user.trigger()
    await user.settled()

    # Rapid changes are coalesced, and only the latest one commits.
    user_id.set(2)
    user_id.set(3)
    await user.settled()

    # Failures keep the last good data around.
    user_id.set(99)
    await user.settled()
    print(f"data after failure: {user.data.value}")


# ------------------------------------------------------------------------------------------------


async def dependent_values():
    print()
    print("=" * 100)
    print("Depending on other instances")
    print("-" * 100)
    print()

    user_id = Observable("user_id", 1)
    user = create(user_id, fetch_user)

    def greeting(source, context, prev_data):
        if source["user"]["name"].startswith("B"):
            raise Decline()  # back to Idle, no error
        return f"{source['salutation']}, {source['user']['name']}!"

    salutation = Observable("salutation", "Hello")
    message = create({"user": user, "salutation": salutation}, greeting)
    message.state.subscribe(lambda state: print(f"message state: {state}"))

    user.trigger()
    await user.settled()
    await message.settled()

    salutation.set("Welcome back")
    await message.settled()

    user_id.set(2)
    await user.settled()
    await message.settled()


# ------------------------------------------------------------------------------------------------

SEARCH_RESULTS = list(range(1, 8))


@define_extension
def load_more(api):
    async def handler(next, context, params):
        offset = len(context.prev_data["items"]) if context.prev_data else 0
        result = await next({"offset": offset})
        result.merge_with_prev_data(array_key="items")
        return result

    return ExtensionConfig(handler=handler, extend={"load_next": api.trigger})


async def fetch_page(page_size, context, prev_data):
    await asyncio.sleep(0.01)
    items = SEARCH_RESULTS[context.offset : context.offset + page_size]
    return {"items": items, "has_more": context.offset + page_size < len(SEARCH_RESULTS)}


async def paginated_values():
    print()
    print("=" * 100)
    print("Extending instances: load more")
    print("-" * 100)
    print()

    feed = create(Observable("page_size", 3), load_more(fetch_page))
    feed.data.subscribe(lambda data: print(f"feed: {data}"))

    feed.load_next()
    await feed.settled()
    while feed.data.value["has_more"]:
        feed.load_next()
        await feed.settled()


async def main():
    await derived_values()
    await dependent_values()
    await paginated_values()


if __name__ == "__main__":
    asyncio.run(main())
