"""Bookings app package.

This app owns the booking lifecycle: the status state machine, the typed
commands callers use to move a booking along it, and the resolver that
decides refunds for cancellations, disputes and emergency overrides. Every
transition and its ledger entries are written in one database transaction.
"""
