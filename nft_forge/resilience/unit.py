"""
Ordering for one unit of work: assure funds, mutate, then confirm visibility.
"""

from typing import Any, Awaitable, Callable, Optional, TypeVar

from .mailbox import AccountMailbox


H = TypeVar("H")


async def run_unit(
    mutate: Callable[[], Awaitable[H]],
    assure: Optional[Callable[[], Awaitable[Any]]] = None,
    confirm: Optional[Callable[[H], Awaitable[Any]]] = None,
    mailbox: Optional[AccountMailbox] = None,
) -> Any:
    """
    Run the steps of one unit strictly in order.

    Assurance and mutation go through `mailbox` when given, so units sharing a
    funding account never interleave those steps. Confirmation runs outside
    the mailbox since it only reads. Returns the confirmation result, or the
    mutation's handle when there is nothing to confirm.
    """
    async def assure_then_mutate() -> H:
        if assure is not None:
            await assure()
        return await mutate()

    if mailbox is not None:
        handle = await mailbox.submit(assure_then_mutate)
    else:
        handle = await assure_then_mutate()

    if confirm is None:
        return handle
    return await confirm(handle)
