"""
Session supervision for wagate.

- base: states, artifacts, the MessagingClient contract
- errors: typed failures and their HTTP status codes
- registry: thread-safe token -> Session store
- controller: lifecycle transitions, gated sends, wait-for-artifact
- models: request/response schemas for the HTTP layer
"""
