"""
LedgerService -- the double-entry engine.

Responsibility:
    Validates and posts balanced journal entries, voids them by posting a
    reversing entry, and serves entry reads as frozen records.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes SequenceService for
    entry numbers and LedgerSelector for account ledgers.

Invariants enforced:
    - sum(debits) == sum(credits) for every entry, checked before any row
      is built.
    - Every line has exactly one positive side (LineSpec, plus the CHECK
      constraint on journal_lines).
    - Entry numbers come from the tenant's durable counter: unique and
      increasing, never max+1.
    - An entry and all of its lines are flushed together; no reader ever
      sees a partial entry.
    - Voiding never touches the original lines.  It posts one reversing
      entry with every line's sides swapped and links the pair.
    - posted -> voided is the only transition, and it happens once.
      Reversing entries are not themselves voidable.

Failure modes:
    - EmptyEntryError, UnbalancedEntryError, UnknownAccountError at
      create_entry.
    - EntryNotFoundError, AlreadyVoidedError, ReversalEntryVoidError at
      void_entry.

Audit relevance:
    ENTRY_POSTED is buffered for every entry (including reversals) and
    ENTRY_VOIDED for the original when it is voided.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.context import OperationContext
from ledger_kernel.domain.dtos import JournalEntryRecord, LineSpec
from ledger_kernel.domain.money import MoneyAmount
from ledger_kernel.domain.references import EntryReference
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    AlreadyVoidedError,
    EmptyEntryError,
    EntryNotFoundError,
    ReversalEntryVoidError,
    UnbalancedEntryError,
    UnknownAccountError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.selectors.ledger_selector import AccountLedger, LedgerSelector
from ledger_kernel.services.audit_outbox import AuditOutbox
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")

ENTITY_TYPE = "JournalEntry"


class LedgerService(BaseService):
    """
    Posts, voids and reads journal entries for one session.

    Contract:
        Every method takes an OperationContext and is scoped to its tenant.
        Mutations flush and return frozen JournalEntryRecords; the caller
        commits.

    Non-goals:
        - No period close, no multi-currency, no draft entries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_outbox: AuditOutbox | None = None,
    ):
        super().__init__(session, clock=clock, audit_outbox=audit_outbox)
        self._sequences = SequenceService(session)
        self._selector = LedgerSelector(session)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def create_entry(
        self,
        ctx: OperationContext,
        entry_date: date,
        description: str,
        lines: Sequence[LineSpec],
        reference: EntryReference | None = None,
    ) -> JournalEntryRecord:
        """
        Post a balanced journal entry.

        Preconditions:
            Each LineSpec already carries exactly one positive side.
        Postconditions:
            Entry and lines are flushed in the caller's transaction; the
            returned record holds every line in order.

        Raises:
            EmptyEntryError: no lines.
            UnbalancedEntryError: debits != credits.
            UnknownAccountError: a line names a missing or inactive account.
        """
        return self._post(ctx, entry_date, description, lines, reference)

    def _validate(self, description: str, lines: Sequence[LineSpec]) -> None:
        if not lines:
            raise EmptyEntryError(description)

        debits = MoneyAmount.sum_of(line.debit for line in lines)
        credits = MoneyAmount.sum_of(line.credit for line in lines)
        if debits != credits:
            raise UnbalancedEntryError(debits.minor, credits.minor)

    def _resolve_accounts(
        self,
        ctx: OperationContext,
        lines: Sequence[LineSpec],
        require_active: bool,
    ) -> dict[str, Account]:
        codes = {line.account_code for line in lines}
        accounts = {
            account.code: account
            for account in self.session.execute(
                select(Account).where(
                    Account.tenant_id == ctx.tenant_id,
                    Account.code.in_(codes),
                )
            ).scalars()
        }

        for line in lines:
            account = accounts.get(line.account_code)
            if account is None:
                raise UnknownAccountError(line.account_code, "account does not exist")
            if require_active and not account.is_active:
                raise UnknownAccountError(line.account_code, "account is inactive")
        return accounts

    def _post(
        self,
        ctx: OperationContext,
        entry_date: date,
        description: str,
        lines: Sequence[LineSpec],
        reference: EntryReference | None,
        *,
        location_id: str | None = None,
        reversal_of_id: UUID | None = None,
    ) -> JournalEntryRecord:
        lines = list(lines)
        self._validate(description, lines)
        # Reversals must post against accounts deactivated since the original
        accounts = self._resolve_accounts(ctx, lines, require_active=reversal_of_id is None)

        entry_number = self._sequences.next_value(ctx.tenant_id, SequenceService.JOURNAL_ENTRY)

        entry = JournalEntry(
            tenant_id=ctx.tenant_id,
            entry_number=entry_number,
            entry_date=entry_date,
            description=description,
            reference_kind=reference.kind.value if reference else None,
            reference_id=reference.ref_id if reference else None,
            location_id=location_id or ctx.location_id,
            is_voided=False,
            reversal_of_id=reversal_of_id,
            created_by=ctx.actor_id,
        )
        for seq, spec in enumerate(lines, start=1):
            entry.lines.append(
                JournalLine(
                    tenant_id=ctx.tenant_id,
                    account=accounts[spec.account_code],
                    debit=spec.debit.minor,
                    credit=spec.credit.minor,
                    line_seq=seq,
                    memo=spec.memo,
                    created_by=ctx.actor_id,
                )
            )
        self.session.add(entry)
        self.session.flush()

        record = JournalEntryRecord.from_model(entry)
        self._audit(ctx, ENTITY_TYPE, entry.id, AuditAction.ENTRY_POSTED, None, record.to_audit_dict())

        with LogContext.bind(entry_id=str(entry.id)):
            logger.info(
                "entry_posted",
                extra={
                    "entry_number": entry_number,
                    "entry_date": entry_date,
                    "line_count": len(lines),
                    "total": record.total_debits.minor,
                    "reference": str(reference) if reference else None,
                    "reversal_of_id": str(reversal_of_id) if reversal_of_id else None,
                },
            )
        return record

    # ------------------------------------------------------------------
    # Voiding
    # ------------------------------------------------------------------

    def void_entry(self, ctx: OperationContext, entry_id: UUID, reason: str) -> JournalEntryRecord:
        """
        Void a posted entry by posting its reversing entry.

        The reversing entry is dated at void time, carries the original's
        reference and location, and swaps every line's debit and credit.
        The original is marked voided and linked to it; its lines are left
        exactly as they were.

        Returns:
            The reversing entry.

        Raises:
            EntryNotFoundError: no such entry for this tenant.
            AlreadyVoidedError: the entry is already voided.
            ReversalEntryVoidError: the entry is itself a reversing entry.
        """
        if not reason or not reason.strip():
            raise ValueError("A void reason is required")

        # Row lock serializes concurrent voids; the version column backs it up
        entry = self.session.execute(
            select(JournalEntry)
            .where(
                JournalEntry.tenant_id == ctx.tenant_id,
                JournalEntry.id == entry_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        if entry.is_voided:
            raise AlreadyVoidedError(str(entry.id), entry.entry_number)
        if entry.reversal_of_id is not None:
            raise ReversalEntryVoidError(str(entry.id), entry.entry_number)

        original = JournalEntryRecord.from_model(entry)
        voided_at = self._clock.now()

        reversing_lines = [line.as_spec().swapped() for line in original.lines]
        reversal = self._post(
            ctx,
            voided_at.date(),
            f"Void of entry #{entry.entry_number}: {reason}",
            reversing_lines,
            original.reference,
            location_id=entry.location_id,
            reversal_of_id=entry.id,
        )

        entry.is_voided = True
        entry.voided_at = voided_at
        entry.void_reason = reason
        entry.reversed_by_id = reversal.entry_id
        entry.updated_by = ctx.actor_id
        self.session.flush()

        after = JournalEntryRecord.from_model(entry)
        self._audit(
            ctx,
            ENTITY_TYPE,
            entry.id,
            AuditAction.ENTRY_VOIDED,
            original.to_audit_dict(),
            after.to_audit_dict(),
        )
        with LogContext.bind(entry_id=str(entry.id)):
            logger.info(
                "entry_voided",
                extra={
                    "entry_number": entry.entry_number,
                    "reversal_entry_id": str(reversal.entry_id),
                    "reversal_entry_number": reversal.entry_number,
                    "reason": reason,
                },
            )
        return reversal

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _entries(self, query) -> list[JournalEntryRecord]:
        return [JournalEntryRecord.from_model(e) for e in self.session.execute(query).scalars()]

    def get_entry(self, ctx: OperationContext, entry_id: UUID) -> JournalEntryRecord:
        entry = self.session.execute(
            select(JournalEntry).where(
                JournalEntry.tenant_id == ctx.tenant_id,
                JournalEntry.id == entry_id,
            )
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return JournalEntryRecord.from_model(entry)

    def get_entry_by_number(self, ctx: OperationContext, entry_number: int) -> JournalEntryRecord:
        entry = self.session.execute(
            select(JournalEntry).where(
                JournalEntry.tenant_id == ctx.tenant_id,
                JournalEntry.entry_number == entry_number,
            )
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(f"#{entry_number}")
        return JournalEntryRecord.from_model(entry)

    def find_entries_by_reference(
        self,
        ctx: OperationContext,
        reference: EntryReference,
    ) -> list[JournalEntryRecord]:
        """Entries for one business event (originals and reversals), by number."""
        return self._entries(
            select(JournalEntry)
            .where(
                JournalEntry.tenant_id == ctx.tenant_id,
                JournalEntry.reference_kind == reference.kind.value,
                JournalEntry.reference_id == reference.ref_id,
            )
            .order_by(JournalEntry.entry_number)
        )

    def get_entries_by_account(
        self,
        ctx: OperationContext,
        code: str,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[JournalEntryRecord]:
        """
        Complete entries with at least one line on ``code`` in the date range.

        Raises:
            AccountNotFoundError: code does not exist.
        """
        account_id = self.session.execute(
            select(Account.id).where(
                Account.tenant_id == ctx.tenant_id,
                Account.code == code,
            )
        ).scalar_one_or_none()
        if account_id is None:
            raise AccountNotFoundError(code)

        touching = select(JournalLine.entry_id).where(JournalLine.account_id == account_id)
        query = (
            select(JournalEntry)
            .where(
                JournalEntry.tenant_id == ctx.tenant_id,
                JournalEntry.id.in_(touching),
            )
            .order_by(JournalEntry.entry_date, JournalEntry.entry_number)
        )
        if date_from is not None:
            query = query.where(JournalEntry.entry_date >= date_from)
        if date_to is not None:
            query = query.where(JournalEntry.entry_date <= date_to)
        return self._entries(query)

    def get_account_ledger(
        self,
        ctx: OperationContext,
        code: str,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> AccountLedger:
        """
        Lines on one account in date order with a running balance.

        Raises:
            AccountNotFoundError: code does not exist.
        """
        ledger = self._selector.account_ledger(ctx.tenant_id, code, date_from, date_to)
        if ledger is None:
            raise AccountNotFoundError(code)
        return ledger
