"""Brute-force attack simulator — floods verification with every 6-digit code.

Replays the classic OTP enumeration attack (batches of concurrent guesses
against one account) against an in-process OTP service and reports which
defence stopped each guess. A manual clock lets the run cover hours of
attacker time in a few seconds.
"""

import argparse
import asyncio
from collections import Counter

from otp_guard.clock import ManualClock
from otp_guard.config import settings
from otp_guard.dependencies import build_otp_service
from otp_guard.errors import OTPError
from otp_guard.store.memory import InMemoryOTPStore

GREEN = "\033[92m"
RED = "\033[91m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"


class SilentDelivery:
    """Swallows codes; the attacker never sees them."""

    async def deliver(self, identifier: str, code: str) -> bool:
        return True


async def main(target: str, batch_size: int, batches: int, pause: float) -> None:
    print(f"\n{BOLD}{'=' * 52}")
    print("  🔓  OTP brute-force simulator")
    print(f"{'=' * 52}{RESET}\n")

    clock = ManualClock(start=1_700_000_000.0)
    config = settings.model_copy(update={"verification_floor_seconds": 0.0})
    service = build_otp_service(
        config, store=InMemoryOTPStore(clock), delivery=SilentDelivery(), clock=clock
    )

    await service.request_otp(target, "203.0.113.10")
    print(f"{DIM}Code issued for {target}; attacking from 198.51.100.7{RESET}\n")

    outcomes: Counter[str] = Counter()
    guess = 0
    for batch in range(batches):
        guesses = [str(n).zfill(config.otp_length) for n in range(guess, guess + batch_size)]
        guess += batch_size
        results = await asyncio.gather(
            *(service.verify_otp(target, "198.51.100.7", g) for g in guesses),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, OTPError):
                outcomes[type(result).__name__] += 1
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes["Verified"] += 1

        print(f"Batch {batch + 1:>3}: tried {guesses[0]}–{guesses[-1]}")
        clock.advance(pause)

    print(f"\n{BOLD}Outcomes after {guess} guesses:{RESET}")
    for name, count in outcomes.most_common():
        print(f"  {name:<14} {count}")

    if outcomes["Verified"]:
        print(f"\n{RED}{BOLD}The attacker guessed the code!{RESET}\n")
    else:
        print(f"\n{GREEN}{BOLD}No guess succeeded.{RESET}\n")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--target", default="helloworld@gmail.com")
    parser.add_argument("--batch-size", type=int, default=500)
    parser.add_argument("--batches", type=int, default=20)
    parser.add_argument(
        "--pause", type=float, default=60.0, help="simulated seconds between batches"
    )
    args = parser.parse_args()
    asyncio.run(main(args.target, args.batch_size, args.batches, args.pause))
