import logging

from django.db import IntegrityError, transaction

from .exceptions import PaymentBadRequest
from .models import CreditAccount, CreditTransaction

logger = logging.getLogger(__name__)


class CreditService:  # Service class for platform credit operations
    """
    Platform credits granted to patients (cancellation bonus) and spent later.

    ACID Compliance:
    - Balance changes lock the account row (select_for_update)
    - Every balance change writes one CreditTransaction with balance before/after
    - A refund grants its bonus at most once (one transaction per refund)
    - The balance never goes below zero
    """

    @staticmethod
    def get_account(participant, currency="INR"):  # Retrieves participant credit account or creates one if not exists
        account, created = CreditAccount.objects.get_or_create(
            participant=participant, defaults={"currency": currency}
        )
        if created:
            logger.info(f"Credit account created for participant {participant.pk}")
        return account

    @staticmethod
    def get_balance(participant):
        return CreditService.get_account(participant).balance

    @staticmethod
    def _locked_account(participant, currency="INR"):
        CreditService.get_account(participant, currency)
        return CreditAccount.objects.select_for_update().get(participant=participant)

    @staticmethod
    @transaction.atomic
    def add_credits(participant, amount, source="adjustment", description="", reference="", refund=None):
        amount = int(amount)
        if amount <= 0:
            raise PaymentBadRequest("Credit amount must be greater than 0")

        if refund is not None:
            existing = CreditTransaction.objects.filter(refund=refund).first()
            if existing:
                logger.info(f"Credit for refund {refund.id} already granted ({existing.id})")
                return existing

        account = CreditService._locked_account(participant)
        balance_before = account.balance
        try:
            with transaction.atomic():
                txn = CreditTransaction.objects.create(
                    account=account,
                    transaction_type="earned",
                    source=source,
                    amount=amount,
                    balance_before=balance_before,
                    balance_after=balance_before + amount,
                    reference=reference,
                    description=description,
                    refund=refund,
                )
        except IntegrityError:
            return CreditTransaction.objects.get(refund=refund)

        account.balance = balance_before + amount
        account.lifetime_earned += amount
        account.save()

        logger.info(f"Added {amount} credits ({source}) to participant {participant.pk}; balance {account.balance}")
        return txn

    @staticmethod
    @transaction.atomic
    def use_credits(participant, amount, reference, description=""):
        amount = int(amount)
        if amount <= 0:
            raise PaymentBadRequest("Credit amount must be greater than 0")

        account = CreditService._locked_account(participant)
        if account.balance < amount:
            raise PaymentBadRequest("Insufficient credits")

        balance_before = account.balance
        txn = CreditTransaction.objects.create(
            account=account,
            transaction_type="used",
            source="payment",
            amount=-amount,
            balance_before=balance_before,
            balance_after=balance_before - amount,
            reference=reference,
            description=description or f"Used for payment {reference}",
        )

        account.balance = balance_before - amount
        account.lifetime_used += amount
        account.save()

        logger.info(f"Used {amount} credits for {reference} by participant {participant.pk}; balance {account.balance}")
        return txn

    @staticmethod
    def transactions_for(participant, limit=20):
        return CreditTransaction.objects.filter(account__participant=participant).select_related("refund")[:limit]

    def grant_refund_credit(self, refund):
        """Credit the payer with the bonus carried by a completed refund"""
        if not refund.credit_amount:
            return None
        payer = refund.payment.payer
        return self.add_credits(
            payer,
            refund.credit_amount,
            source="refund_bonus",
            description=f"Cancellation credit for refund {refund.reference}",
            reference=refund.reference,
            refund=refund,
        )
