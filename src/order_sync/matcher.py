"""Match retailer orders to the bank transactions that paid for them.

Matching is strict: the amount has to agree within ``amount_tolerance`` and
the posted date has to fall within ``date_tolerance_days`` of the order
date. Among the candidates that pass, the closest date wins, then the
closest amount, then whichever came first in the input.

Finding a match never claims it. Callers add the transaction id to their
used set only once they commit to the match.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from .exceptions import ChargeSumMismatchError, InvalidChargeAmountError
from .models import MatchResult, MultiMatchResult, Order, Transaction
from .money import to_decimal, within_tolerance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatcherConfig:
    """Tolerances used when comparing an order to a transaction."""

    amount_tolerance: Decimal = Decimal("0.01")
    date_tolerance_days: int = 5


class TransactionMatcher:
    """Matches orders with Monarch transactions."""

    def __init__(self, config: MatcherConfig | None = None):
        """Initialize the matcher."""
        self.config = config or MatcherConfig()

    def find_match(
        self,
        order: Order,
        transactions: list[Transaction],
        used_ids: set[str],
        amount: Decimal | None = None,
    ) -> MatchResult | None:
        """
        Find the best matching transaction for an order.

        Orders with a negative total are returns and only match inflows;
        everything else only matches outflows.

        Args:
            order: The order to match
            transactions: Candidate transactions
            used_ids: Transaction IDs already claimed in this run (not modified)
            amount: Amount to match instead of the order total, e.g. the
                single bank charge of an order partly paid by gift card

        Returns:
            The best match, or None if no candidate is within tolerance
        """
        target = to_decimal(order.total if amount is None else amount)
        is_return = target < 0

        match = self._best_candidate(
            target=abs(target),
            target_date=order.order_date,
            transactions=transactions,
            excluded_ids=used_ids,
            want_inflow=is_return,
        )

        if match is None:
            logger.debug(
                f"No transaction within tolerance for order {order.id} "
                f"(amount ${abs(target):.2f}, date {order.order_date})"
            )
        else:
            logger.debug(
                f"Order {order.id} matched transaction {match.transaction.id} "
                f"(date diff {match.date_diff}d, amount diff ${match.amount_diff:.2f})"
            )

        return match

    def find_multiple_matches(
        self,
        order: Order,
        transactions: list[Transaction],
        used_ids: set[str],
        amounts: list[Decimal],
    ) -> MultiMatchResult:
        """
        Find one transaction for each expected charge of a split-shipment order.

        Every charge is matched against the order date. A transaction picked
        for one charge can't be picked again for another charge in the same
        call. Charges with no candidate leave a None slot and matching moves
        on to the next charge.

        Args:
            order: The order the charges belong to
            transactions: Candidate transactions
            used_ids: Transaction IDs already claimed in this run (not modified)
            amounts: Expected charge amounts, all positive

        Returns:
            Result with one slot per amount; ``all_found`` is True only if
            every slot is filled and the matched amounts sum to the order total

        Raises:
            InvalidChargeAmountError: If ``amounts`` is empty or has a
                non-positive entry
            ChargeSumMismatchError: If every slot is filled but the matched
                amounts don't add up to the order total
        """
        if not amounts:
            raise InvalidChargeAmountError("No charge amounts provided")

        charges = [to_decimal(amount) for amount in amounts]
        for i, charge in enumerate(charges):
            if charge <= 0:
                raise InvalidChargeAmountError(
                    f"Invalid charge amount at index {i}: {charge:.2f} "
                    f"(must be positive)"
                )

        matched_this_call: set[str] = set()
        matches: list[MatchResult | None] = []

        for charge in charges:
            match = self._best_candidate(
                target=charge,
                target_date=order.order_date,
                transactions=transactions,
                excluded_ids=used_ids | matched_this_call,
                want_inflow=False,
            )
            if match is not None:
                matched_this_call.add(match.transaction.id)
            matches.append(match)

        result = MultiMatchResult(matches=matches, amounts=charges, all_found=False)

        if result.found_count < len(charges):
            logger.info(
                f"Order {order.id}: matched {result.found_count} of "
                f"{len(charges)} charges"
            )
            return result

        self.validate_multi_match_sum(result, order.total)
        result.all_found = True
        return result

    def validate_multi_match_sum(
        self, result: MultiMatchResult, order_total: Decimal
    ) -> None:
        """
        Check that the matched transactions add up to the order total.

        Raises:
            ChargeSumMismatchError: If there is nothing to validate, a slot
                is empty, or the sum is off by more than the amount tolerance
        """
        if not result.matches:
            raise ChargeSumMismatchError("No matches to validate", result)

        total = Decimal("0")
        for i, match in enumerate(result.matches):
            if match is None:
                raise ChargeSumMismatchError(
                    f"Cannot validate sum with empty match at index {i}", result
                )
            total += abs(match.transaction.amount)

        expected = abs(to_decimal(order_total))
        if not within_tolerance(total, expected, self.config.amount_tolerance):
            diff = abs(total - expected)
            raise ChargeSumMismatchError(
                f"Charge sum ${total:.2f} does not match order total "
                f"${expected:.2f} (diff: ${diff:.2f}, "
                f"tolerance: ${self.config.amount_tolerance:.2f})",
                result,
            )

    def _best_candidate(
        self,
        target: Decimal,
        target_date: date,
        transactions: list[Transaction],
        excluded_ids: set[str],
        want_inflow: bool,
    ) -> MatchResult | None:
        """Pick the closest transaction to ``target`` on ``target_date``."""
        best: tuple[int, Decimal, int] | None = None
        best_txn: Transaction | None = None

        for index, txn in enumerate(transactions):
            if txn.id in excluded_ids:
                continue

            # Inflows pay for returns, outflows pay for purchases
            if want_inflow and txn.amount < 0:
                continue
            if not want_inflow and txn.amount > 0:
                continue

            date_diff = abs((txn.posted_date - target_date).days)
            if date_diff > self.config.date_tolerance_days:
                continue

            amount = abs(txn.amount)
            if not within_tolerance(amount, target, self.config.amount_tolerance):
                continue
            amount_diff = abs(amount - target)

            score = (date_diff, amount_diff, index)
            if best is None or score < best:
                best = score
                best_txn = txn

        if best is None or best_txn is None:
            return None

        return MatchResult(
            transaction=best_txn,
            date_diff=best[0],
            amount_diff=best[1],
        )
