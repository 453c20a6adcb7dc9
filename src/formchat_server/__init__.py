"""formchat_server — FastAPI application for conversational forms.

Exposes the WhatsApp webhook, queue and dead-letter administration,
session inspection and message simulation, and hosts the queue worker.
Console scripts: ``formchat-server``, ``formchat-worker``,
``formchat-abandon``, ``formchat-seed``.
"""
