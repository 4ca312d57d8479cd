"""
Matcher — decides what an inbound bank notification means.

Pure functions only: no session, no clock. The reconciliation
service feeds in the parsed webhook and the pending transactions
it found, and acts on the returned outcome.

Outcomes:
    NoCodeFound           no transfer code in the memo
    NoPendingTransaction  code found, nothing pending under it
    AmountMismatch        pending row found, amount differs
    Matched               pending row found, amount is exact

Amounts must match exactly. Bank transfers in this domain are
whole numbers, so any difference means user error or tampering
and must not auto-credit.
"""

import re
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime

from payment_reconciliation.models.enums import TransactionStatus
from payment_reconciliation.models.transaction import Transaction
from payment_reconciliation.services.exceptions import CodeGenerationExhausted


TRANSFER_CODE_SUFFIX_LENGTH = 6
MAX_CODE_ATTEMPTS = 10

# No 0/O, 1/I/L: users retype these codes into banking apps
CODE_LETTERS = "ABCDEFGHJKMNPQRSTUVWXYZ"
CODE_DIGITS = "23456789"
CODE_ALPHABET = CODE_LETTERS + CODE_DIGITS


@dataclass(frozen=True)
class ParsedWebhook:
    """The fields of a webhook the matcher is allowed to look at."""
    code: str | None
    amount: int | None
    description: str | None = None
    external_transaction_id: str | None = None
    transacted_at: datetime | None = None


@dataclass(frozen=True)
class NoCodeFound:
    name = "no_code_found"


@dataclass(frozen=True)
class NoPendingTransaction:
    code: str
    name = "no_pending_transaction"


@dataclass(frozen=True)
class AmountMismatch:
    transaction: Transaction
    expected: int
    received: int | None
    name = "amount_mismatch"

    @property
    def reason(self) -> str:
        return f"Amount mismatch: expected {self.expected}, got {self.received}"


@dataclass(frozen=True)
class Matched:
    transaction: Transaction
    name = "matched"


MatchOutcome = NoCodeFound | NoPendingTransaction | AmountMismatch | Matched


def code_pattern(prefix: str) -> re.Pattern:
    return re.compile(
        rf"{re.escape(prefix)}[A-Z0-9]{{{TRANSFER_CODE_SUFFIX_LENGTH}}}",
        re.IGNORECASE,
    )


def extract_transfer_code(description: str | None, prefix: str) -> str | None:
    """
    Find the first transfer code in a free-text bank memo.

    Banks mangle memos (case, surrounding text, separators), so
    this is best effort: the first prefix+6 run wins, uppercased.
    """
    if not description:
        return None
    found = code_pattern(prefix).search(description)
    if not found:
        return None
    return found.group(0).upper()


def generate_transfer_code(prefix: str) -> str:
    """
    Build prefix + 6 characters from the unambiguous alphabet.

    At least two letters and two digits are mixed in so the code
    does not look like a word or an account number.
    """
    chars = [
        secrets.choice(CODE_LETTERS),
        secrets.choice(CODE_LETTERS),
        secrets.choice(CODE_DIGITS),
        secrets.choice(CODE_DIGITS),
    ]
    chars += [
        secrets.choice(CODE_ALPHABET)
        for _ in range(TRANSFER_CODE_SUFFIX_LENGTH - len(chars))
    ]
    secrets.SystemRandom().shuffle(chars)
    return prefix.upper() + "".join(chars)


def generate_unique_code(
    prefix: str,
    is_taken: Callable[[str], bool],
    attempts: int = MAX_CODE_ATTEMPTS,
) -> str:
    """Draw codes until one is free. Raises CodeGenerationExhausted."""
    for _ in range(attempts):
        code = generate_transfer_code(prefix)
        if not is_taken(code):
            return code
    raise CodeGenerationExhausted(
        f"Unable to generate a unique transfer code after {attempts} attempts"
    )


def match(
    parsed: ParsedWebhook,
    pending: Mapping[str, Transaction],
) -> MatchOutcome:
    """
    Decide the outcome for one webhook.

    `pending` maps transfer codes to candidate transactions.
    Candidates that are no longer PENDING are treated as absent.
    """
    if not parsed.code:
        return NoCodeFound()

    transaction = pending.get(parsed.code)
    if transaction is None or transaction.status != TransactionStatus.PENDING:
        return NoPendingTransaction(code=parsed.code)

    if parsed.amount != transaction.amount:
        return AmountMismatch(
            transaction=transaction,
            expected=transaction.amount,
            received=parsed.amount,
        )

    return Matched(transaction=transaction)
