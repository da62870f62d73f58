"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - STRUCTURAL VALIDATION:
- Amount is finite, positive and within the sanity limit
- Income/expense name at least one wallet, without repeats
- Transfers name two distinct endpoints
- No storage access needed

STAGE 2 - WALLET-AWARE VALIDATION:
- Every referenced wallet exists and belongs to the user
- Income/expense touch one Physical AND one Logical wallet
  (so both views move by the same amount)
- Transfers stay inside one view (Physical -> Physical, Logical -> Logical)

Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes input. It rejects it with a
typed error carrying every issue found, before any balance is touched.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from walletledger.config import LedgerSettings, get_settings
from walletledger.ledger.errors import (
    TransferConstraintError,
    ValidationError,
    WalletNotFoundError,
)
from walletledger.models.transaction import (
    Transaction,
    TransactionDraft,
    TransactionType,
)
from walletledger.models.validation import ValidationIssue
from walletledger.models.wallet import Wallet, WalletKind
from walletledger.services.storage.interface import WalletStorageInterface


WALLET_NAME_MIN_LENGTH = 2
WALLET_NAME_MAX_LENGTH = 50

# Issue types that make a rejection a TransferConstraintError
TRANSFER_ISSUE_TYPES = {"missing_endpoint", "self_transfer", "kind_mismatch"}


def _has_errors(issues: list[ValidationIssue]) -> bool:
    return any(issue.severity == "error" for issue in issues)


class TransactionValidator:
    """
    Validates transaction drafts and new wallets.

    Stage 1 is synchronous and storage-free; stage 2 reads the user's
    wallets through the wallet store.
    """

    def __init__(
        self,
        wallet_storage: WalletStorageInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._wallets = wallet_storage
        self._settings = settings or get_settings().ledger

    def validate_structure(self, draft: TransactionDraft) -> list[ValidationIssue]:
        """
        Stage 1: structural validation.

        Returns every issue found (errors and warnings).
        """
        issues = []

        amount = draft.amount
        if not amount.is_finite() or amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="non_positive",
                message="Amount must be a finite number greater than zero",
                suggested_fix="Enter the amount as a positive number; the type sets the direction",
            ))
        elif amount > self._settings.max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="too_large",
                message=f"Amount {amount:,} exceeds the limit of {self._settings.max_amount:,}",
                suggested_fix="Check the amount for extra digits",
            ))

        if not draft.title:
            issues.append(ValidationIssue(
                field="title",
                issue_type="missing",
                message="Transaction has no title",
                severity="warning",
            ))

        if draft.type == TransactionType.TRANSFER:
            issues.extend(self._check_transfer_structure(draft))
        else:
            issues.extend(self._check_wallet_set_structure(draft))

        return issues

    def _check_transfer_structure(self, draft: TransactionDraft) -> list[ValidationIssue]:
        if not draft.source_wallet_id:
            return [ValidationIssue(
                field="source_wallet_id",
                issue_type="missing_endpoint",
                message="Source wallet is required for transfers",
            )]
        if not draft.destination_wallet_id:
            return [ValidationIssue(
                field="destination_wallet_id",
                issue_type="missing_endpoint",
                message="Destination wallet is required for transfers",
            )]
        if draft.source_wallet_id == draft.destination_wallet_id:
            return [ValidationIssue(
                field="destination_wallet_id",
                issue_type="self_transfer",
                message="Source and destination wallets must be different",
            )]
        return []

    def _check_wallet_set_structure(self, draft: TransactionDraft) -> list[ValidationIssue]:
        wallet_ids = draft.effective_wallet_ids
        if not wallet_ids:
            return [ValidationIssue(
                field="affected_wallet_ids",
                issue_type="wallet_shape",
                message="At least one wallet must be selected",
            )]
        if len(set(wallet_ids)) != len(wallet_ids):
            return [ValidationIssue(
                field="affected_wallet_ids",
                issue_type="wallet_shape",
                message="The same wallet is selected more than once",
            )]
        if self._settings.enforce_dual_wallet_shape and len(wallet_ids) != 2:
            return [ValidationIssue(
                field="affected_wallet_ids",
                issue_type="wallet_shape",
                message="Select exactly one Physical and one Logical wallet",
                suggested_fix="Pick the account the money moves through and the budget it belongs to",
            )]
        return []

    async def _load_wallets(
        self,
        user_id: str,
        wallet_ids: tuple[str, ...],
    ) -> dict[str, Wallet]:
        wallets = {}
        for wallet_id in wallet_ids:
            wallet = await self._wallets.get_wallet(wallet_id)
            if wallet is None or wallet.user_id != user_id:
                raise WalletNotFoundError(wallet_id)
            wallets[wallet_id] = wallet
        return wallets

    async def validate_wallets(
        self,
        user_id: str,
        draft: TransactionDraft,
    ) -> list[ValidationIssue]:
        """
        Stage 2: wallet-aware validation.

        Raises:
            WalletNotFoundError: a referenced wallet is missing or not the user's
        """
        issues = []

        if draft.type == TransactionType.TRANSFER:
            wallets = await self._load_wallets(
                user_id, (draft.source_wallet_id, draft.destination_wallet_id)
            )
            source = wallets[draft.source_wallet_id]
            destination = wallets[draft.destination_wallet_id]
            if source.kind != destination.kind:
                issues.append(ValidationIssue(
                    field="destination_wallet_id",
                    issue_type="kind_mismatch",
                    message=(
                        f"Cannot transfer from a {source.kind.value} wallet "
                        f"to a {destination.kind.value} wallet"
                    ),
                    suggested_fix="Transfers must stay within the Physical or the Logical view",
                ))
            return issues

        wallets = await self._load_wallets(user_id, draft.effective_wallet_ids)
        if self._settings.enforce_dual_wallet_shape:
            kinds = sorted(wallet.kind.value for wallet in wallets.values())
            if kinds != [WalletKind.LOGICAL.value, WalletKind.PHYSICAL.value]:
                issues.append(ValidationIssue(
                    field="affected_wallet_ids",
                    issue_type="wallet_shape",
                    message="Select exactly one Physical and one Logical wallet",
                ))
        return issues

    async def validate_draft(
        self,
        user_id: str,
        draft: TransactionDraft,
        transaction_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Transaction:
        """
        Run both stages and build the transaction record.

        Args:
            user_id: Owner of the transaction
            draft: Caller input
            transaction_id: Keep this id (edits)
            created_at: Keep this creation stamp (edits)

        Raises:
            ValidationError / TransferConstraintError: with all issues found
            WalletNotFoundError: a referenced wallet is missing
        """
        issues = self.validate_structure(draft)
        self._raise_if_invalid(draft, issues)

        issues.extend(await self.validate_wallets(user_id, draft))
        self._raise_if_invalid(draft, issues)

        return draft.to_transaction(
            user_id=user_id,
            transaction_id=transaction_id,
            created_at=created_at,
        )

    def _raise_if_invalid(
        self,
        draft: TransactionDraft,
        issues: list[ValidationIssue],
    ) -> None:
        if not _has_errors(issues):
            return
        errors = [issue for issue in issues if issue.severity == "error"]
        message = "; ".join(issue.message for issue in errors)
        if draft.type == TransactionType.TRANSFER and any(
            issue.issue_type in TRANSFER_ISSUE_TYPES for issue in errors
        ):
            raise TransferConstraintError(message, issues)
        raise ValidationError(message, issues)

    async def validate_new_wallet(
        self,
        user_id: str,
        name: str,
        initial_balance: Decimal,
    ) -> None:
        """
        Validate a wallet before it is created.

        Raises:
            ValidationError: bad name, taken name or out-of-range balance
        """
        issues = []
        name = name.strip()

        if not WALLET_NAME_MIN_LENGTH <= len(name) <= WALLET_NAME_MAX_LENGTH:
            issues.append(ValidationIssue(
                field="name",
                issue_type="invalid_length",
                message=(
                    f"Wallet name must be {WALLET_NAME_MIN_LENGTH}-"
                    f"{WALLET_NAME_MAX_LENGTH} characters"
                ),
            ))
        else:
            existing = await self._wallets.get_wallets_by_user(user_id)
            if any(wallet.name.lower() == name.lower() for wallet in existing):
                issues.append(ValidationIssue(
                    field="name",
                    issue_type="duplicate_name",
                    message=f"A wallet named '{name}' already exists",
                    suggested_fix="Choose a different name",
                ))

        if not initial_balance.is_finite():
            issues.append(ValidationIssue(
                field="initial_balance",
                issue_type="invalid_value",
                message="Initial balance must be a finite number",
            ))
        elif not (
            self._settings.min_initial_balance
            <= initial_balance
            <= self._settings.max_initial_balance
        ):
            issues.append(ValidationIssue(
                field="initial_balance",
                issue_type="out_of_range",
                message=(
                    f"Initial balance must be between {self._settings.min_initial_balance:,} "
                    f"and {self._settings.max_initial_balance:,}"
                ),
            ))

        if issues:
            raise ValidationError(
                "; ".join(issue.message for issue in issues), issues
            )
