"""Runtime handlers for Vigil.

Scheduler owns the timers, AlertDispatcher relays the mailbox and
ChatHandler answers inbound messages.
"""
