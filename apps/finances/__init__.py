"""Finances app package.

This app owns the transaction ledger, the commission calculator, host
payouts and the adapters for the external payment and payout gateways,
together with the Celery tasks that reconcile in-flight gateway calls.
"""
