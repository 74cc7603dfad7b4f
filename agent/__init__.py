"""Agent internals -- the request-orchestration core of the relay.

Module Overview
---------------
**credential_cache.py**
    Bearer-token cache for the Battle.net client-credentials flow. Refreshes
    lazily and lets at most one refresh run at a time.

**prompt_assembler.py**
    Builds the role-tagged message list for a conversational turn from the
    stored system prompt and history, plus the reply-length directive.

**inference_client.py**
    Chat-completion client. History-backed ``complete`` and stateless
    ``complete_once`` share one request path and one error taxonomy.

**resource_client.py**
    Character-profile client authenticated through the credential cache.

**fanout.py**
    Concurrent fan-out/gather that turns a list of tracked names into one
    ordered, partial-failure-tolerant report.

**errors.py**
    Error classes shared by all of the above.

**config_validator.py**
    Startup checks for environment and gateway configuration.

Architecture
------------
1. **Injected state**: the conversation store and HTTP client are passed in,
   never reached through module globals.

2. **No gateway knowledge**: nothing here knows about chat platforms or
   command syntax; ``gateway/`` adapts events onto these components.

3. **Errors as types**: every failure callers may need to tell apart has its
   own exception class; fan-out turns them into per-item results.
"""
