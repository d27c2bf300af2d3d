"""
ChartOfAccountsService -- tenant chart of accounts management.

Responsibility:
    Creates accounts, moves them within the hierarchy, toggles their active
    flag, and answers balance and hierarchy questions for one tenant.

Architecture position:
    Kernel > Services -- imperative shell.  Reads balances through
    LedgerSelector; never posts journal entries.

Invariants enforced:
    - (tenant, code) is unique.
    - The hierarchy is acyclic.  A parent is a key reference within the
      tenant; a new parent is rejected when it is the account itself or
      one of its descendants.
    - normal_balance is derived from account_type and never changes.
    - Accounts are never deleted.  Deactivation is blocked for a non-zero
      balance only when block_deactivation_with_open_balance is on.

Failure modes:
    - DuplicateCodeError, InvalidParentError, AccountNotFoundError,
      AccountInUseError.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.context import OperationContext
from ledger_kernel.domain.dtos import AccountNode, AccountRecord
from ledger_kernel.domain.money import MoneyAmount
from ledger_kernel.exceptions import (
    AccountInUseError,
    AccountNotFoundError,
    DuplicateCodeError,
    InvalidParentError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.audit_outbox import AuditOutbox
from ledger_kernel.services.base import BaseService

logger = get_logger("services.chart")

ENTITY_TYPE = "Account"


class ChartOfAccountsService(BaseService):
    """
    Tenant-scoped chart of accounts.

    Contract:
        Every method takes an OperationContext; every query filters on its
        tenant_id.  Mutations flush, buffer an audit record, and return a
        frozen AccountRecord.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_outbox: AuditOutbox | None = None,
        block_deactivation_with_open_balance: bool = False,
    ):
        super().__init__(session, clock=clock, audit_outbox=audit_outbox)
        self._block_deactivation_with_open_balance = block_deactivation_with_open_balance
        self._ledger_selector = LedgerSelector(session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _find(self, ctx: OperationContext, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(
                Account.tenant_id == ctx.tenant_id,
                Account.code == code,
            )
        ).scalar_one_or_none()

    def _require(self, ctx: OperationContext, code: str) -> Account:
        account = self._find(ctx, code)
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def _ancestor_codes(self, ctx: OperationContext, code: str) -> list[str]:
        """Codes from ``code`` up to its root, inclusive."""
        chain = []
        current = code
        while current is not None and current not in chain:
            chain.append(current)
            parent = self.session.execute(
                select(Account.parent_code).where(
                    Account.tenant_id == ctx.tenant_id,
                    Account.code == current,
                )
            ).scalar_one_or_none()
            current = parent
        return chain

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        ctx: OperationContext,
        code: str,
        name: str,
        account_type: AccountType | str,
        parent_code: str | None = None,
    ) -> AccountRecord:
        """
        Create an account in the tenant's chart.

        Raises:
            DuplicateCodeError: code already exists in the tenant.
            InvalidParentError: parent unknown, or the account itself.
            ValueError: account_type or code is invalid.
        """
        if not code or not code.strip():
            raise ValueError("Account code must be non-empty")
        account_type = AccountType(account_type)

        if self._find(ctx, code) is not None:
            raise DuplicateCodeError(ctx.tenant_id, code)

        if parent_code is not None:
            if parent_code == code:
                raise InvalidParentError(code, parent_code, "an account cannot be its own parent")
            if self._find(ctx, parent_code) is None:
                raise InvalidParentError(code, parent_code, "parent account does not exist")

        account = Account(
            tenant_id=ctx.tenant_id,
            code=code,
            name=name,
            account_type=account_type.value,
            normal_balance=account_type.normal_balance.value,
            parent_code=parent_code,
            is_active=True,
            created_by=ctx.actor_id,
        )
        self.session.add(account)
        self.session.flush()

        record = AccountRecord.from_model(account)
        self._audit(ctx, ENTITY_TYPE, account.id, AuditAction.ACCOUNT_CREATED, None, record.to_audit_dict())
        logger.info(
            "account_created",
            extra={
                "account_code": code,
                "account_type": account_type.value,
                "parent_code": parent_code,
            },
        )
        return record

    def reparent(
        self,
        ctx: OperationContext,
        code: str,
        new_parent_code: str | None,
    ) -> AccountRecord:
        """
        Move an account under another parent (None makes it a root).

        Raises:
            AccountNotFoundError: code does not exist.
            InvalidParentError: new parent unknown, or a descendant of the
                account (including the account itself).
        """
        account = self._require(ctx, code)
        if account.parent_code == new_parent_code:
            return AccountRecord.from_model(account)

        if new_parent_code is not None:
            if self._find(ctx, new_parent_code) is None:
                raise InvalidParentError(code, new_parent_code, "parent account does not exist")
            if code in self._ancestor_codes(ctx, new_parent_code):
                raise InvalidParentError(
                    code, new_parent_code, "assigning this parent would create a cycle"
                )

        before = AccountRecord.from_model(account).to_audit_dict()
        account.parent_code = new_parent_code
        account.updated_by = ctx.actor_id
        self.session.flush()

        record = AccountRecord.from_model(account)
        self._audit(ctx, ENTITY_TYPE, account.id, AuditAction.ACCOUNT_REPARENTED, before, record.to_audit_dict())
        logger.info(
            "account_reparented",
            extra={"account_code": code, "parent_code": new_parent_code},
        )
        return record

    def deactivate(self, ctx: OperationContext, code: str) -> AccountRecord:
        """
        Mark an account inactive.  Already-inactive accounts are returned as-is.

        Raises:
            AccountNotFoundError: code does not exist.
            AccountInUseError: the open-balance policy is on and the
                account's balance is non-zero.
        """
        account = self._require(ctx, code)
        if not account.is_active:
            return AccountRecord.from_model(account)

        if self._block_deactivation_with_open_balance:
            balance = self.get_balance(ctx, code)
            if not balance.is_zero:
                raise AccountInUseError(code, balance.minor)

        return self._set_active(ctx, account, False, AuditAction.ACCOUNT_DEACTIVATED)

    def reactivate(self, ctx: OperationContext, code: str) -> AccountRecord:
        """Mark an inactive account active again."""
        account = self._require(ctx, code)
        if account.is_active:
            return AccountRecord.from_model(account)
        return self._set_active(ctx, account, True, AuditAction.ACCOUNT_REACTIVATED)

    def _set_active(
        self,
        ctx: OperationContext,
        account: Account,
        active: bool,
        action: AuditAction,
    ) -> AccountRecord:
        before = AccountRecord.from_model(account).to_audit_dict()
        account.is_active = active
        account.updated_by = ctx.actor_id
        self.session.flush()

        record = AccountRecord.from_model(account)
        self._audit(ctx, ENTITY_TYPE, account.id, action, before, record.to_audit_dict())
        logger.info(action.value, extra={"account_code": account.code})
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_account(self, ctx: OperationContext, code: str) -> AccountRecord:
        return AccountRecord.from_model(self._require(ctx, code))

    def list_accounts(self, ctx: OperationContext, include_inactive: bool = False) -> list[AccountRecord]:
        query = select(Account).where(Account.tenant_id == ctx.tenant_id).order_by(Account.code)
        if not include_inactive:
            query = query.where(Account.is_active.is_(True))
        return [AccountRecord.from_model(a) for a in self.session.execute(query).scalars()]

    def get_balance(
        self,
        ctx: OperationContext,
        code: str,
        as_of: date | None = None,
    ) -> MoneyAmount:
        """
        Balance of an account, positive on its normal side.

        Debit-normal accounts (asset, expense) count debits as positive;
        credit-normal accounts (liability, equity, revenue) count credits.
        A voided entry and its reversing entry cancel each other from the
        void date onward.

        Raises:
            AccountNotFoundError: code does not exist.
        """
        totals = self._ledger_selector.account_balance(ctx.tenant_id, code, as_of)
        if totals is None:
            raise AccountNotFoundError(code)
        return MoneyAmount(totals.balance)

    def get_hierarchy(self, ctx: OperationContext, include_inactive: bool = True) -> tuple[AccountNode, ...]:
        """
        The tenant's account tree, roots first, siblings ordered by code.

        Accounts whose parent is filtered out (inactive) are shown as roots.
        """
        accounts = self.list_accounts(ctx, include_inactive=include_inactive)
        present = {a.code for a in accounts}

        children: dict[str | None, list[AccountRecord]] = {}
        for account in accounts:
            parent = account.parent_code if account.parent_code in present else None
            children.setdefault(parent, []).append(account)

        def build(account: AccountRecord) -> AccountNode:
            return AccountNode(
                account=account,
                children=tuple(build(child) for child in children.get(account.code, [])),
            )

        return tuple(build(root) for root in children.get(None, []))
