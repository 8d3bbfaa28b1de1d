"""Use cases layer - Business logic orchestration for access enforcement.

This layer contains the reconciler and the triggers that call it:
- AccessReconciler: compare-then-act for one subscriber's block rule
- SubscriberMutationHook: reconcile after a record is saved or deleted
- AccessSweep: periodic reconciliation of every subscriber
- PaymentConfirmationHandler: exactly-once reactivation after payment
- InitiatePaymentUseCase: start a payment and store its correlation
- RecordPaymentUseCase: apply a payment entered by an operator

Use cases depend only on ports, not concrete implementations.
"""

from .mutation_hook import SubscriberMutationHook
from .payment_confirmation import PaymentConfirmationHandler
from .payment_initiation import InitiatePaymentUseCase, PaymentNotPossible, SubscriberNotFound
from .reconcile_access import AccessReconciler, rule_lock_key
from .record_payment import RecordPaymentUseCase
from .sweep import AccessSweep

__all__ = [
    "AccessReconciler",
    "rule_lock_key",
    "SubscriberMutationHook",
    "AccessSweep",
    "PaymentConfirmationHandler",
    "InitiatePaymentUseCase",
    "RecordPaymentUseCase",
    "PaymentNotPossible",
    "SubscriberNotFound",
]
