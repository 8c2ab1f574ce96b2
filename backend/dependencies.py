"""Shared dependencies wiring the ledger to storage and the chain."""

from fastapi import Depends
from sqlalchemy.orm import Session

from chain.executor import RpcTransferExecutor
from chain.rpc import RpcClient
from chain.wallet import RpcWalletConnection
from database import get_db
from ledger.events import payment_events
from ledger.reconciler import PaymentReconciler
from ledger.store import LedgerStore
from storage import SqlKeyValueStore


rpc_client = RpcClient()
wallet_connection = RpcWalletConnection(rpc_client)
transfer_executor = RpcTransferExecutor(rpc_client, wallet_connection)


def get_ledger(db: Session = Depends(get_db)) -> LedgerStore:
    """A ledger over this request's database session."""
    return LedgerStore(SqlKeyValueStore(db))


def get_wallet():
    return wallet_connection


def get_transfer_executor():
    return transfer_executor


def get_event_bus():
    return payment_events


def get_reconciler(
    ledger: LedgerStore = Depends(get_ledger),
    executor=Depends(get_transfer_executor),
    events=Depends(get_event_bus),
) -> PaymentReconciler:
    return PaymentReconciler(ledger, executor, events)
