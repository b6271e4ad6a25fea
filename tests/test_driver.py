import asyncio
import unittest

from fake_ledger import FakeLedger

from scriptorium.driver import InscriptionDriver, Phase, RetryPolicy, needed_grows
from scriptorium.errors import (
    AccountNotFoundError,
    AllocationStalledError,
    AuthorityError,
    InscriptionCancelled,
    ProgramRejectedError,
    WriteFailedError,
    classify_program_error,
)
from scriptorium.remote import InscriptionTarget

ACCOUNT = "inscription-account"
METADATA = "inscription-metadata"


async def _no_sleep(_delay: float) -> None:
    return None


def _payload(size: int) -> bytes:
    return bytes((i * 7 + 1) % 256 for i in range(size))


class InscriptionDriverTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.ledger = FakeLedger()
        self.ledger.create_account(ACCOUNT)
        self.target = InscriptionTarget(ACCOUNT, METADATA)
        self.messages: list[str] = []

    def _driver(self, **kwargs: object) -> InscriptionDriver:
        kwargs.setdefault("log", self.messages.append)
        kwargs.setdefault("sleep", _no_sleep)
        return InscriptionDriver(self.ledger, **kwargs)

    async def test_small_payload_needs_one_grow_and_three_writes(self) -> None:
        payload = _payload(1200)
        result = await self._driver().inscribe(self.target, payload)

        self.assertEqual(self.ledger.grow_calls, 1)
        self.assertEqual(self.ledger.write_calls, 3)
        self.assertEqual(sorted(self.ledger.writes), [0, 500, 1000])
        self.assertTrue(await self.ledger.account_valid(ACCOUNT, payload))
        self.assertEqual(result.phase, Phase.CONVERGED)
        self.assertEqual(result.final_length, 1200)

    async def test_second_inscribe_is_a_no_op(self) -> None:
        payload = _payload(3000)
        driver = self._driver()
        await driver.inscribe(self.target, payload)
        grows, writes = self.ledger.grow_calls, self.ledger.write_calls

        result = await driver.inscribe(self.target, payload)

        self.assertEqual(self.ledger.grow_calls, grows)
        self.assertEqual(self.ledger.write_calls, writes)
        self.assertEqual(result.grows_issued, 0)
        self.assertEqual(result.writes_issued, 0)
        self.assertTrue(result.converged)

    async def test_large_payload_grows_in_increments(self) -> None:
        payload = _payload(25_000)
        await self._driver(concurrency=4).inscribe(self.target, payload)

        self.assertEqual(self.ledger.grow_calls, 3)
        self.assertEqual(self.ledger.data(ACCOUNT), payload)

    async def test_converges_from_partially_written_account(self) -> None:
        payload = _payload(4000)
        self.ledger.create_account(ACCOUNT, payload[:1700])

        result = await self._driver().inscribe(self.target, payload)

        self.assertEqual(self.ledger.data(ACCOUNT), payload)
        # Chunks 0-2 already match; chunk 3 is partial and 4-7 are missing.
        self.assertEqual(sorted(self.ledger.writes), [1500, 2000, 2500, 3000, 3500])
        self.assertEqual(result.initial_length, 1700)

    async def test_failed_grows_are_recovered_by_next_round(self) -> None:
        payload = _payload(25_000)
        self.ledger.grow_failures = 2

        result = await self._driver(concurrency=3).inscribe(self.target, payload)

        self.assertEqual(self.ledger.data(ACCOUNT), payload)
        self.assertEqual(result.grows_failed, 2)
        self.assertEqual(result.sizing_rounds, 2)
        self.assertTrue(any("Allocate failed" in msg for msg in self.messages))

    async def test_failed_writes_are_retried(self) -> None:
        payload = _payload(1200)
        self.ledger.write_failures = {500: 2}

        result = await self._driver().inscribe(self.target, payload)

        self.assertTrue(await self.ledger.account_valid(ACCOUNT, payload))
        self.assertEqual(result.writes_failed, 2)
        self.assertEqual(result.writes_issued, 5)

    async def test_write_gives_up_after_max_attempts(self) -> None:
        payload = _payload(1200)
        self.ledger.write_failures = {0: 100}
        driver = self._driver(retry=RetryPolicy(max_attempts=3, base_delay=0))

        with self.assertRaises(WriteFailedError) as ctx:
            await driver.inscribe(self.target, payload)

        self.assertEqual(ctx.exception.offset, 0)
        self.assertEqual(driver.last_result.phase, Phase.FAILED)
        # The other chunks in the batch still completed.
        self.assertIn(500, self.ledger.writes)
        self.assertIn(1000, self.ledger.writes)

    async def test_allocation_that_never_progresses_is_surfaced(self) -> None:
        self.ledger.grow_failures = 1_000

        with self.assertRaises(AllocationStalledError):
            await self._driver(max_stalled_rounds=2).inscribe(self.target, _payload(1200))

        self.assertEqual(self.ledger.grow_calls, 3)
        self.assertEqual(self.ledger.write_calls, 0)

    async def test_authority_error_is_not_retried(self) -> None:
        self.ledger.grow_error = AuthorityError("The payer does not have authority to perform this action.")

        with self.assertRaises(AuthorityError):
            await self._driver().inscribe(self.target, _payload(1200))

        self.assertEqual(self.ledger.grow_calls, 1)

    async def test_program_rejection_during_allocation_is_surfaced(self) -> None:
        self.ledger.grow_error = classify_program_error(3)

        with self.assertRaises(ProgramRejectedError) as ctx:
            await self._driver().inscribe(self.target, _payload(1200))

        self.assertEqual(ctx.exception.code, 3)
        self.assertEqual(self.ledger.grow_calls, 1)

    async def test_program_rejection_during_write_is_not_retried(self) -> None:
        payload = _payload(1200)
        self.ledger.create_account(ACCOUNT, b"\x00" * 1200)
        self.ledger.write_error = classify_program_error(4)

        with self.assertRaises(ProgramRejectedError):
            await self._driver(concurrency=1).inscribe(self.target, payload)

        self.assertEqual(self.ledger.write_calls, 3)
        self.assertEqual(self.ledger.grow_calls, 0)

    async def test_missing_account_raises_not_found(self) -> None:
        target = InscriptionTarget("missing", METADATA)
        with self.assertRaises(AccountNotFoundError):
            await self._driver().inscribe(target, _payload(10))

    async def test_concurrency_limit_is_respected(self) -> None:
        payload = _payload(5000)
        await self._driver(concurrency=3).inscribe(self.target, payload)

        self.assertEqual(self.ledger.write_calls, 10)
        self.assertLessEqual(self.ledger.max_in_flight, 3)
        self.assertGreater(self.ledger.max_in_flight, 1)

    async def test_rewrites_chunks_corrupted_between_rounds(self) -> None:
        payload = _payload(1200)
        corrupted = []

        def corrupt_once(ledger: FakeLedger, target: InscriptionTarget, offset: int) -> None:
            if offset == 500 and not corrupted:
                corrupted.append(offset)
                ledger.accounts[target.account][0] ^= 0xFF

        self.ledger.after_write = corrupt_once
        result = await self._driver(concurrency=1).inscribe(self.target, payload)

        self.assertEqual(self.ledger.writes, [0, 500, 1000, 0])
        self.assertEqual(result.writing_rounds, 2)
        self.assertIn("Verification failed, retrying...", self.messages)
        self.assertEqual(self.ledger.data(ACCOUNT), payload)

    async def test_longer_account_with_matching_prefix_needs_nothing(self) -> None:
        payload = _payload(1200)
        self.ledger.create_account(ACCOUNT, payload + b"trailing")

        result = await self._driver().inscribe(self.target, payload)

        self.assertEqual(self.ledger.grow_calls, 0)
        self.assertEqual(self.ledger.write_calls, 0)
        self.assertTrue(result.converged)

    async def test_cancellation_stops_at_round_boundary(self) -> None:
        cancel = asyncio.Event()
        cancel.set()

        with self.assertRaises(InscriptionCancelled):
            await self._driver(cancel_event=cancel).inscribe(self.target, _payload(1200))

        self.assertEqual(self.ledger.grow_calls, 0)

    async def test_empty_payload_converges_immediately(self) -> None:
        result = await self._driver().inscribe(self.target, b"")
        self.assertTrue(result.converged)
        self.assertEqual(self.ledger.write_calls, 0)


class NeededGrowsTests(unittest.TestCase):
    def test_rounds_up(self) -> None:
        self.assertEqual(needed_grows(1200, 0), 1)
        self.assertEqual(needed_grows(10_240, 0), 1)
        self.assertEqual(needed_grows(10_241, 0), 2)

    def test_non_positive_when_large_enough(self) -> None:
        self.assertEqual(needed_grows(1200, 1200), 0)
        self.assertEqual(needed_grows(1200, 5000), 0)

    def test_retry_delay_is_capped(self) -> None:
        policy = RetryPolicy(max_attempts=10, base_delay=0.5, max_delay=4.0)
        self.assertEqual(policy.delay(1), 0.5)
        self.assertEqual(policy.delay(3), 2.0)
        self.assertEqual(policy.delay(8), 4.0)


if __name__ == "__main__":
    unittest.main()
