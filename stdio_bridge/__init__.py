# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Call functions and exchange channel messages with a worker over stdin/stdout."""

import logging

from stdio_bridge.bridge import (
    AsyncHandler,
    BridgeClosedError,
    BridgeConfig,
    BridgeError,
    BridgeRemoteError,
    BridgeState,
    BridgeTransport,
    FrameEncodingError,
    HandlerRegistration,
    HostBridge,
    Listener,
    PipeTransport,
    RemoteFunction,
    StderrMode,
    SubprocessTransport,
    SyncHandler,
    UnknownFunctionError,
    WorkerBridge,
    WorkerSetup,
    connect,
    make_pipe_pair,
    open_stdio_transport,
    run_worker,
    serve_pipe,
    serve_stdio,
)

__all__ = [
    # Core
    "HostBridge",
    "WorkerBridge",
    "RemoteFunction",
    "HandlerRegistration",
    "BridgeConfig",
    "BridgeState",
    # Convenience
    "connect",
    "run_worker",
    "serve_pipe",
    "serve_stdio",
    "WorkerSetup",
    # Handlers
    "SyncHandler",
    "AsyncHandler",
    "Listener",
    # Transports
    "BridgeTransport",
    "PipeTransport",
    "SubprocessTransport",
    "StderrMode",
    "make_pipe_pair",
    "open_stdio_transport",
    # Errors
    "BridgeError",
    "BridgeClosedError",
    "BridgeRemoteError",
    "FrameEncodingError",
    "UnknownFunctionError",
]

# Attach NullHandler so library users don't get "No handler found" warnings.
logging.getLogger("stdio_bridge").addHandler(logging.NullHandler())
