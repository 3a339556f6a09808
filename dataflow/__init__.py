"""
Dataflow Layer

Event I/O layer for the candle engine. Contains:
- candle_aggregation: Tick to candle aggregation
- adapters: NATS client adapters
- query: Status API
"""
