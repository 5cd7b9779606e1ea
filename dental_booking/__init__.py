"""Dental booking: the tool backend for a dental-practice voice assistant.

Architecture Overview
=====================

The voice platform calls ``POST /tool-webhook`` once per tool the
assistant decides to use.  Each call is stateless on the wire, so the
conversation lives in a persisted ``ConversationState`` keyed by call id.

1. **orchestrator** loads the state, validates the tool arguments, runs
   the handler, checks the proposed change against the transition table,
   optionally chains a follow-up tool, and saves the state (a LangGraph
   ``StateGraph`` with ``dispatch`` and ``persist`` nodes).
2. **tools** are thin handlers that turn scheduling results into speech
   and state deltas.
3. **scheduling** holds the booking core: slot search and bucketing,
   slot matching, patient lookup and intake, and the hold-then-book
   committer.
4. **services** wrap the outside world: NexHealth (httpx with retries),
   Anthropic (constrained classification), SQLAlchemy storage,
   CloudWatch metrics and Resend email.

Key Design Decisions
--------------------
- **In-band errors**: the webhook always answers HTTP 200; failures are
  carried in each result's ``error`` field as caller-safe text.
- **Explicit stages**: every state change goes through
  ``state_machine.advance``; illegal transitions raise instead of
  silently corrupting the call.
- **Two-phase booking**: a slot is held before the caller confirms and
  only booked from an active hold.

Package Structure
-----------------
- ``dental_booking/config.py`` - configuration from env, .env and SSM
- ``dental_booking/models.py`` - conversation state models
- ``dental_booking/state_machine.py`` - transition table
- ``dental_booking/orchestrator.py`` - per-turn LangGraph
- ``dental_booking/server.py`` - FastAPI application
- ``dental_booking/main.py`` - CLI tool-call console
- ``dental_booking/api/`` - routes and webhook schemas
- ``dental_booking/tools/`` - tool handlers and registry
- ``dental_booking/scheduling/`` - booking core
- ``dental_booking/services/`` - external clients and storage
"""
