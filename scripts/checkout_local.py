from __future__ import annotations

#!/usr/bin/env python3
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

"""
Interactive local checkout harness (no HTTP, no real gateway).

Usage:
  python3 scripts/checkout_local.py

What it does:
- Builds a checkout session through the same wiring the API uses
- Lets you walk the steps, submit, and play the gateway popup by hand
- With the mock backend, /settle marks a payment as paid so verification succeeds
"""

import asyncio
import os
from datetime import date, timedelta
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from checkout.application.exceptions import CheckoutError
from checkout.domain.entities.checkout_draft import CartLine, PickupPoint
from checkout.domain.entities.customer import CustomerIdentity
from checkout.domain.entities.payment_attempt import GatewayOutcome, GatewayOutcomeKind
from checkout.infrastructure.backend.mock_order_backend import MockOrderBackend
from checkout.wiring.dependencies import (
    get_availability_calculator,
    get_checkout_session,
    get_gateway,
    get_order_backend,
)

DEMO_CART = [
    CartLine("jollof-rice", "Jollof Rice", 2, Decimal("5000")),
    CartLine("chapman", "Chapman", 1, Decimal("1500")),
]

POPUP_OUTCOMES = {
    "success": GatewayOutcomeKind.SUCCESS,
    "failed": GatewayOutcomeKind.FAILURE,
    "cancelled": GatewayOutcomeKind.CANCEL,
}


def _print_header(session_id: str) -> None:
    print("\nLocal Checkout Harness")
    print("-" * 60)
    print(f"session_id: {session_id}")
    print("Type /help for commands.")
    print("-" * 60)


def _print_help() -> None:
    print("Commands:")
    print("  /start                       -> resume or start the checkout with a demo cart")
    print("  /contact NAME|EMAIL|PHONE    -> set contact details")
    print("  /pickup                      -> choose pickup at the demo kitchen")
    print("  /schedule YYYY-MM-DD HH:MM HH:MM -> pick a window")
    print("  /method paystack             -> choose a payment method")
    print("  /terms                       -> accept terms")
    print("  /next, /back                 -> move between steps")
    print("  /slots                       -> show windows for the next 3 days")
    print("  /submit                      -> create the order and open the payment popup")
    print("  /settle [status]             -> (mock backend) settle the last payment")
    print("  /popup success|failed|cancelled -> answer the open popup")
    print("  /verify                      -> re-verify the last reference")
    print("  /view, /reset, /quit")


def _print_view(session) -> None:
    view = session.machine.view()
    totals = view.totals
    print("\n--- Checkout ---")
    print(f"step: {view.step.value}")
    print(f"items: {len(view.draft.items)}  subtotal: {totals.subtotal}  fee: {totals.delivery_fee}  total: {totals.total}")
    if view.last_error:
        print(f"last_error: {view.last_error}")
    attempt = session.machine.last_attempt
    if attempt is not None:
        print(f"attempt: {attempt.status.value} reference={attempt.reference} order={attempt.order_number}")


def _print_result(result) -> None:
    if hasattr(result, "allowed"):
        print(f"allowed: {result.allowed} step: {result.step.value}")
        for field, message in result.errors.items():
            print(f"  {field}: {message}")
        return
    print(f"payment: {result.status.value} duplicate={result.duplicate} channel={result.channel}")
    if result.message:
        print(f"  {result.message}")


async def _run_command(session, cmd: str, args: str) -> None:
    machine = session.machine
    coordinator = session.coordinator

    if cmd == "/start":
        identity = CustomerIdentity(guest_session_id=session.session_id)
        if not session.cart.items():
            session.cart.replace(DEMO_CART)
        decision = await session.recovery.recover(machine, coordinator, identity)
        if decision.action in ("fresh", "discarded"):
            machine.set_cart(session.cart.items())
        print(f"recovery: {decision.action}")
        _print_view(session)
    elif cmd == "/contact":
        name, email, phone = (part.strip() for part in (args.split("|") + ["", "", ""])[:3])
        _print_result(machine.set_contact(name, email, phone))
    elif cmd == "/pickup":
        _print_result(machine.choose_fulfillment("pickup", pickup_point=PickupPoint("main", "Main Kitchen")))
    elif cmd == "/schedule":
        day, start, end = args.split()
        _print_result(machine.choose_schedule(date.fromisoformat(day), start, end))
    elif cmd == "/method":
        _print_result(machine.choose_payment_method(args or "paystack"))
    elif cmd == "/terms":
        _print_result(machine.accept_terms(True))
    elif cmd == "/next":
        _print_result(machine.advance())
    elif cmd == "/back":
        _print_result(machine.back())
    elif cmd == "/slots":
        calculator = get_availability_calculator()
        first = calculator.now().date()
        for slot in calculator.get_slots(first, first + timedelta(days=2), machine.draft.fulfillment_type):
            open_windows = [w.start_time for w in slot.time_windows if w.available]
            label = slot.holiday_name or ("open" if slot.is_business_day else "closed")
            print(f"{slot.date} {label}: {', '.join(open_windows) or '-'}")
    elif cmd == "/submit":
        token = await coordinator.submit()
        attempt = coordinator.attempt(token)
        print(f"popup url: {attempt.gateway_url}")
        print(f"reference: {attempt.reference}")
        session.gateway_task = asyncio.create_task(coordinator.await_gateway(token))
    elif cmd == "/settle":
        backend = get_order_backend()
        reference = machine.last_attempt.reference if machine.last_attempt else None
        if not isinstance(backend, MockOrderBackend) or not reference:
            print("Nothing to settle (needs the mock backend and a submitted payment).")
            return
        backend.settle(reference, args or "success")
        print(f"settled {reference} as {args or 'success'}")
    elif cmd == "/popup":
        attempt = machine.last_attempt
        kind = POPUP_OUTCOMES.get(args)
        if attempt is None or kind is None or not get_gateway().deliver(
            attempt.reference, GatewayOutcome(kind=kind, reference=attempt.reference)
        ):
            print("No popup is waiting for that answer.")
            return
        if session.gateway_task is not None:
            _print_result(await session.gateway_task)
    elif cmd == "/verify":
        _print_result(await coordinator.reverify())
    elif cmd == "/view":
        _print_view(session)
    elif cmd == "/reset":
        coordinator.abandon()
        print("Checkout abandoned.")
    else:
        print("Unknown command. Type /help.")


async def main() -> None:
    session_id = os.getenv("CHECKOUT_SESSION_ID", "local_session_1")
    session = get_checkout_session(session_id)
    _print_header(session_id)

    while True:
        try:
            user_text = (await asyncio.to_thread(input, "\n> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\nBye!")
            return

        if not user_text:
            continue
        cmd, _, args = user_text.partition(" ")
        cmd = cmd.lower()
        if cmd in ("/quit", "/exit"):
            print("Bye!")
            return
        if cmd == "/help":
            _print_help()
            continue

        try:
            await _run_command(session, cmd, args.strip())
        except CheckoutError as e:
            print(f"ERROR ({e.category}): {e.user_message}")
        except ValueError as e:
            print(f"ERROR: {e}")

        print("-" * 60)


if __name__ == "__main__":
    asyncio.run(main())
