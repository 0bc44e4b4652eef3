"""SpecGate models package.

Defines the shared data contracts used across the interception pipeline:

  - outcome.py   — ValidationOutcome, OutcomeKind, SkipReason
  - exchange.py  — InterceptedRequest, InterceptedResponse, ResolvedRoute
  - responses.py — builders for proxy-generated error responses (502, 503)
"""
