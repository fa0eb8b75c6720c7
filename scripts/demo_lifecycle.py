#!/usr/bin/env python3
"""
Demo: a coffee-harvest escrow driven through the HTTP API in-process.

Operator:    opens the escrow and signs off milestones
Alice:       the depositor (buyer)
Bob:         the beneficiary (grower)

Showcases:
  1. Escrow creation with weighted milestones
  2. Funding from the depositor's approved ledger balance
  3. Out-of-order milestone completion and progress tracking
  4. Release gating and the one-time payout
  5. The audit trail

Run:
  python scripts/demo_lifecycle.py
"""

import asyncio

import httpx

from milestone_escrow.config import settings
from milestone_escrow.main import app
from milestone_escrow.runtime import ledger

OPERATOR = settings.primary_operator
ALICE = "alice"
BOB = "bob"

# ─── Colors ───

BOLD = "\033[1m"
DIM = "\033[2m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
CYAN = "\033[96m"
RESET = "\033[0m"


def banner(text: str) -> None:
    print(f"\n{'═' * 64}")
    print(f"  {BOLD}{text}{RESET}")
    print(f"{'═' * 64}")


def step(text: str) -> None:
    print(f"  {CYAN}▸{RESET} {text}")


def result(resp: httpx.Response) -> dict:
    color = GREEN if resp.is_success else RED
    print(f"    {color}{resp.status_code}{RESET} {DIM}{resp.text[:120]}{RESET}")
    return resp.json()


def as_caller(identity: str) -> dict[str, str]:
    return {"X-Caller-Identity": identity}


async def main() -> None:
    ledger.deposit(ALICE, 5_000)
    ledger.approve(ALICE, settings.custody_account, 1_000)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://demo") as client:
        banner("1. Operator opens the escrow")
        body = result(await client.post(
            "/escrows",
            json={
                "title": "Coffee harvest",
                "beneficiary": BOB,
                "depositor": ALICE,
                "total_amount": 1_000,
                "milestones": [
                    {"description": "Harvest", "weight": 40},
                    {"description": "Quality", "weight": 30},
                    {"description": "Ship", "weight": 30},
                ],
            },
            headers=as_caller(OPERATOR),
        ))
        escrow_id = body["id"]

        banner("2. Alice funds it")
        step("Bob tries first (rejected)")
        result(await client.post(f"/escrows/{escrow_id}/fund", headers=as_caller(BOB)))
        step("Alice funds")
        result(await client.post(f"/escrows/{escrow_id}/fund", headers=as_caller(ALICE)))
        print(f"    custody balance: {YELLOW}{ledger.balance_of(settings.custody_account)}{RESET}")

        banner("3. Milestones, out of order")
        for index in (1, 0, 2):
            step(f"Release attempt before milestone {index}")
            result(await client.post(f"/escrows/{escrow_id}/release", headers=as_caller(OPERATOR)))
            step(f"Complete milestone {index}")
            await client.post(f"/escrows/{escrow_id}/milestones/{index}/complete", headers=as_caller(OPERATOR))
            progress = (await client.get(f"/escrows/{escrow_id}/progress")).json()["progress"]
            print(f"    progress: {YELLOW}{progress}%{RESET}")

        banner("4. Release")
        result(await client.post(f"/escrows/{escrow_id}/release", headers=as_caller(OPERATOR)))
        step("Second release (rejected)")
        result(await client.post(f"/escrows/{escrow_id}/release", headers=as_caller(OPERATOR)))
        print(f"    Bob's balance: {GREEN}{ledger.balance_of(BOB)}{RESET}")

        banner("5. Audit trail")
        for event in (await client.get(f"/escrows/{escrow_id}/events")).json():
            print(f"    #{event['sequence']} {event['event']} {DIM}{event['details']}{RESET}")


if __name__ == "__main__":
    asyncio.run(main())
