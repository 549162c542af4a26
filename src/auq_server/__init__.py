"""auq_server — HTTP tool surface for the question session SDK.

Lets an agent that speaks HTTP ask the user questions: ``POST /api/v1/ask``
blocks until the user answers in the terminal client.  Also exposes
read-only session inspection and an admin retention sweep.
"""
