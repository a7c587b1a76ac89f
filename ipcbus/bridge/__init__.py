"""Bridge layer between the bus core and its external collaborators.

Modules
-------
transport
    ``ClientTransport`` / ``TargetHandle`` protocols and ``LocalChannel``,
    the in-process duplex channel that carries framed JSON bytes between a
    client context and the broker.
gateway
    ``FrameGateway``, the broker-side endpoint that dispatches incoming
    frames on their explicit ``FrameKind``.
audit_bridge
    ``AuditHook`` protocol and ``JsonlAuditLog``, the daily JSONL audit sink.
"""
