"""
Tests for the eventual-visibility poller.
"""

import pytest

from nft_forge.core.exceptions import NotFoundError, ValidationError, VisibilityTimeoutError
from nft_forge.resilience import wait_for_visibility


class Resource:
    """Lookup that becomes visible on call number `visible_on`."""

    def __init__(self, visible_on: int, raise_before: bool = False):
        self.visible_on = visible_on
        self.raise_before = raise_before
        self.calls = 0

    async def lookup(self):
        self.calls += 1
        if self.calls < self.visible_on:
            if self.raise_before:
                raise LookupError("account not found")
            return None
        return {"mint": "abc"}


@pytest.mark.asyncio
async def test_visible_on_fourth_lookup(sleeper):
    resource = Resource(visible_on=4, raise_before=True)

    found = await wait_for_visibility(resource.lookup, "abc", max_retries=10, delay=3.0, sleep=sleeper)

    assert found == {"mint": "abc"}
    assert resource.calls == 4
    assert sleeper.delays == [3.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_none_counts_as_not_visible(sleeper):
    resource = Resource(visible_on=2)

    await wait_for_visibility(resource.lookup, "abc", max_retries=3, delay=1.0, sleep=sleeper)

    assert resource.calls == 2


@pytest.mark.asyncio
async def test_immediately_visible_never_sleeps(sleeper):
    resource = Resource(visible_on=1)

    await wait_for_visibility(resource.lookup, "abc", sleep=sleeper)

    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_timeout_after_max_retries(sleeper):
    resource = Resource(visible_on=100, raise_before=True)

    with pytest.raises(VisibilityTimeoutError) as exc_info:
        await wait_for_visibility(resource.lookup, "mint123", max_retries=5, delay=2.0, sleep=sleeper)

    assert resource.calls == 5
    assert len(sleeper.delays) == 4
    assert exc_info.value.handle == "mint123"
    assert exc_info.value.attempts == 5
    assert isinstance(exc_info.value, NotFoundError)


@pytest.mark.asyncio
@pytest.mark.parametrize("max_retries", [0, -1])
async def test_rejects_fewer_than_one_lookup(sleeper, max_retries):
    resource = Resource(visible_on=1)

    with pytest.raises(ValidationError):
        await wait_for_visibility(resource.lookup, "abc", max_retries=max_retries, sleep=sleeper)

    assert resource.calls == 0
