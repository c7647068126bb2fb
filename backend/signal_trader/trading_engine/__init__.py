"""
Trading Engine Components

Core order lifecycle and position-state components:
- TradeLedger: durable record of trades and their status
- OrderExecutionEngine: idempotent market orders with bounded retries
- PositionReconciler: flattens open positions and computes realized P&L
- SignalRouter: validates inbound signals and dispatches them
- SymbolLocks: per-symbol serialization of order sequences
"""
