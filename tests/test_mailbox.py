"""
Tests for the per-account mailbox and unit ordering.
"""

import asyncio

import pytest

from nft_forge.resilience import AccountMailbox, run_unit


@pytest.mark.asyncio
async def test_jobs_never_interleave():
    events = []

    def job(name):
        async def run():
            events.append(f"{name}:start")
            await asyncio.sleep(0)
            events.append(f"{name}:end")
            return name
        return run

    async with AccountMailbox("wallet") as mailbox:
        results = await asyncio.gather(*(mailbox.submit(job(n)) for n in "abc"))

    assert results == ["a", "b", "c"]
    assert events == ["a:start", "a:end", "b:start", "b:end", "c:start", "c:end"]
    assert mailbox.processed == 3
    assert not mailbox.running


@pytest.mark.asyncio
async def test_job_error_reaches_submitter_and_worker_survives():
    async def failing():
        raise RuntimeError("send failed")

    async def ok():
        return 1

    async with AccountMailbox("wallet") as mailbox:
        with pytest.raises(RuntimeError):
            await mailbox.submit(failing)
        assert await mailbox.submit(ok) == 1


class Halt(BaseException):
    """A non-Exception error that takes the worker down."""


@pytest.mark.asyncio
async def test_fatal_job_error_fails_queued_jobs():
    async def fatal():
        await asyncio.sleep(0)
        raise Halt()

    async def ok():
        return 1

    mailbox = AccountMailbox("wallet")
    results = await asyncio.wait_for(
        asyncio.gather(mailbox.submit(fatal), mailbox.submit(ok), return_exceptions=True),
        timeout=1
    )

    assert [type(r) for r in results] == [Halt, Halt]
    assert not mailbox.running
    await mailbox.stop()


@pytest.mark.asyncio
async def test_shared_balance_is_read_and_spent_atomically():
    balance = {"value": 3}
    spent = []

    async def spend():
        current = balance["value"]
        await asyncio.sleep(0)
        balance["value"] = current - 1
        spent.append(current)

    async with AccountMailbox("wallet") as mailbox:
        await asyncio.gather(*(mailbox.submit(spend) for _ in range(3)))

    assert balance["value"] == 0
    assert spent == [3, 2, 1]


@pytest.mark.asyncio
async def test_run_unit_orders_steps():
    events = []

    async def assure():
        events.append("assure")

    async def mutate():
        events.append("mutate")
        return "handle"

    async def confirm(handle):
        events.append(f"confirm:{handle}")
        return "visible"

    result = await run_unit(mutate, assure=assure, confirm=confirm)

    assert result == "visible"
    assert events == ["assure", "mutate", "confirm:handle"]


@pytest.mark.asyncio
async def test_run_unit_skips_mutation_when_assurance_fails():
    mutated = []

    async def assure():
        raise ValueError("no funds")

    async def mutate():
        mutated.append(True)

    with pytest.raises(ValueError):
        await run_unit(mutate, assure=assure)

    assert mutated == []


@pytest.mark.asyncio
async def test_run_unit_through_mailbox_serializes_assure_and_mutate():
    events = []

    def unit(name):
        async def assure():
            events.append(f"{name}:assure")
            await asyncio.sleep(0)

        async def mutate():
            events.append(f"{name}:mutate")
            return name

        return assure, mutate

    async with AccountMailbox("wallet") as mailbox:
        handles = await asyncio.gather(*(
            run_unit(mutate, assure=assure, mailbox=mailbox)
            for assure, mutate in (unit("a"), unit("b"))
        ))

    assert handles == ["a", "b"]
    assert events == ["a:assure", "a:mutate", "b:assure", "b:mutate"]
